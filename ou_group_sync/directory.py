"""
Directory client for Active Directory reads and writes.

This module wraps an ldap3 connection with the three listings the sync needs
(organizational units, enabled mail users, existing groups) and the write
primitives used to recreate groups and add members.
"""

import logging
import ssl
from typing import Dict, List, Any, Optional
from ldap3 import Server, Connection, SUBTREE, ALL, Tls, MODIFY_ADD, NO_ATTRIBUTES
from ldap3.core.exceptions import LDAPException

from ou_group_sync.dn import parse_dn
from ou_group_sync.logging_setup import audit_logger
from ou_group_sync.models import DirectoryUser, MailGroup, OrganizationalUnit

logger = logging.getLogger(__name__)

USER_FILTER = (
    "(&(objectClass=user)"
    # enabled accounts only (ACCOUNTDISABLE bit not set)
    "(!(userAccountControl:1.2.840.113556.1.4.803:=2))"
    # with a mail address
    "(mail=*))"
)
OU_FILTER = "(objectClass=organizationalUnit)"
GROUP_FILTER = "(objectClass=group)"

OU_ATTRIBUTES = ['name', 'description']
GROUP_ATTRIBUTES = ['name']

GROUP_OBJECT_CLASSES = ['group', 'top']
# ADS_GROUP_TYPE_GLOBAL_GROUP | ADS_GROUP_TYPE_SECURITY_ENABLED
GLOBAL_SECURITY_GROUP_TYPE = '-2147483646'


class DirectoryError(Exception):
    """Base class for directory failures."""
    pass


class DirectoryConnectionError(DirectoryError):
    """Raised when connecting or binding to the directory fails."""
    pass


class DirectoryQueryError(DirectoryError):
    """Raised when a directory search fails."""
    pass


class DirectoryWriteError(DirectoryError):
    """Raised when an add, delete or modify request fails."""
    pass


class DirectoryClient:
    """
    Active Directory client used by the sync.

    A single connection is opened and bound once; all searches and writes run
    sequentially over it.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize directory client with configuration.

        Args:
            config: ``ldap`` section of the application configuration
        """
        self.config = config
        self.server_url = config['server_url']
        self.bind_dn = config['bind_dn']
        self.bind_password = config['bind_password']
        self.user_base_dn = config['user_base_dn']
        self.group_base_dn = config['group_base_dn']

        # SSL/TLS configuration
        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')
        self.cert_file = config.get('cert_file')
        self.key_file = config.get('key_file')

        # Connection settings
        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)

        self.server = None
        self.connection = None
        self._connected = False

    def connect(self) -> bool:
        """
        Open the connection and bind with the configured credentials.

        Returns:
            True if connection successful

        Raises:
            DirectoryConnectionError: If the server cannot be reached or the bind fails
        """
        try:
            tls_config = self._create_tls_config()
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=tls_config,
                get_info=ALL,
                connect_timeout=self.connection_timeout
            )
            logger.debug(f"Created LDAP server object for {self.server_url} (SSL: {self.use_ssl}, StartTLS: {self.start_tls})")
        except DirectoryConnectionError:
            raise
        except Exception as e:
            raise DirectoryConnectionError(f"Failed to create LDAP server: {e}")

        try:
            self.connection = Connection(
                self.server,
                user=self.bind_dn,
                password=self.bind_password,
                auto_bind=False,
                receive_timeout=self.receive_timeout
            )

            if not self.connection.open():
                raise DirectoryConnectionError(f"Failed to open connection: {self.connection.result}")

            if self.start_tls and not self.use_ssl:
                if not self.connection.start_tls():
                    raise DirectoryConnectionError(f"Failed to start TLS: {self.connection.result}")
                logger.debug("StartTLS negotiation successful")

            if not self.connection.bind():
                audit_logger.log_authentication_attempt(self.server_url, self.bind_dn, False)
                raise DirectoryConnectionError(f"Bind failed: {self.connection.result}")

        except DirectoryConnectionError:
            self._release()
            raise
        except LDAPException as e:
            self._release()
            raise DirectoryConnectionError(f"Failed to connect to {self.server_url}: {e}")

        self._connected = True
        audit_logger.log_authentication_attempt(self.server_url, self.bind_dn, True)
        logger.info(f"Successfully connected and bound to LDAP server {self.server_url}")
        return True

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration for the connection.

        Returns:
            Tls configuration object or None if not needed
        """
        if not (self.use_ssl or self.start_tls):
            return None

        tls_config = {}

        if not self.verify_ssl:
            tls_config['validate'] = ssl.CERT_NONE
            logger.warning("SSL certificate verification disabled")
        else:
            tls_config['validate'] = ssl.CERT_REQUIRED

        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file
            logger.debug(f"Using CA certificate file: {self.ca_cert_file}")

        # Client certificate for mutual TLS
        if self.cert_file and self.key_file:
            tls_config['local_certificate_file'] = self.cert_file
            tls_config['local_private_key_file'] = self.key_file
            logger.debug("Client certificate configured for mutual TLS")

        try:
            return Tls(**tls_config)
        except Exception as e:
            raise DirectoryConnectionError(f"Failed to create TLS configuration: {e}")

    def _release(self):
        if self.connection:
            try:
                self.connection.unbind()
            except LDAPException as e:
                logger.debug(f"Ignoring unbind error on failed connection: {e}")
            self.connection = None

    def disconnect(self):
        """Close the connection."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except Exception as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def _search(self, search_base: str, search_filter: str, attributes) -> list:
        """Run a subtree search and return the matching ldap3 entries."""
        if not self._connected:
            raise DirectoryQueryError("Not connected to LDAP server")

        logger.debug(f"Searching with filter: {search_filter} in base: {search_base}")
        try:
            success = self.connection.search(
                search_base=search_base,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=attributes
            )
        except LDAPException as e:
            raise DirectoryQueryError(f"LDAP search failed in {search_base}: {e}")

        # ldap3 reports an empty result set as False with result code 0
        if not success and self.connection.result.get('result', 0) != 0:
            raise DirectoryQueryError(f"Search failed in {search_base}: {self.connection.result}")

        return list(self.connection.entries)

    @staticmethod
    def _first_value(entry, attribute: str) -> str:
        values = entry.entry_attributes_as_dict.get(attribute) or []
        return str(values[0]) if values else ''

    def search_organizational_units(self) -> List[OrganizationalUnit]:
        """
        List every OU below the user base.

        Returns:
            OUs in directory order with name and description
        """
        entries = self._search(self.user_base_dn, OU_FILTER, OU_ATTRIBUTES)
        ous = [
            OrganizationalUnit(
                dn=str(entry.entry_dn),
                name=self._first_value(entry, 'name'),
                description=self._first_value(entry, 'description')
            )
            for entry in entries
        ]
        logger.info(f"Retrieved {len(ous)} organizational units")
        return ous

    def search_users(self) -> List[DirectoryUser]:
        """
        List enabled users with a mail address below the user base.

        Returns:
            Users with their parsed distinguished names

        Raises:
            DistinguishedNameError: If a returned DN cannot be parsed
        """
        entries = self._search(self.user_base_dn, USER_FILTER, NO_ATTRIBUTES)
        users = [DirectoryUser(dn=parse_dn(str(entry.entry_dn))) for entry in entries]
        logger.info(f"Retrieved {len(users)} enabled mail users")
        return users

    def search_mail_groups(self) -> List[MailGroup]:
        """
        List existing groups below the group base.

        Returns:
            Groups with their DN and name
        """
        entries = self._search(self.group_base_dn, GROUP_FILTER, GROUP_ATTRIBUTES)
        groups = [
            MailGroup(dn=str(entry.entry_dn), name=self._first_value(entry, 'name'))
            for entry in entries
        ]
        logger.info(f"Retrieved {len(groups)} existing groups")
        return groups

    def _write(self, operation: str, dn: str, request):
        if not self._connected:
            raise DirectoryWriteError("Not connected to LDAP server")

        try:
            success = request()
        except LDAPException as e:
            audit_logger.log_directory_write(operation, dn, False)
            raise DirectoryWriteError(f"Failed to {operation} {dn}: {e}")

        audit_logger.log_directory_write(operation, dn, success)
        if not success:
            raise DirectoryWriteError(f"Failed to {operation} {dn}: {self.connection.result}")

    def add_group(self, dn: str, name: str):
        """
        Create a global security group.

        Args:
            dn: Distinguished name of the new group
            name: Account name of the group

        Raises:
            DirectoryWriteError: If the add request fails
        """
        attributes = {
            'groupType': [GLOBAL_SECURITY_GROUP_TYPE],
            'sAMAccountName': [name],
        }
        self._write('add', dn, lambda: self.connection.add(
            dn, object_class=GROUP_OBJECT_CLASSES, attributes=attributes))

    def delete_entry(self, dn: str):
        """
        Delete an entry by DN.

        Raises:
            DirectoryWriteError: If the delete request fails
        """
        self._write('delete', dn, lambda: self.connection.delete(dn))

    def add_member(self, group_dn: str, member_dn: str):
        """
        Append a member DN to a group's member attribute.

        Raises:
            DirectoryWriteError: If the modify request fails
        """
        changes = {'member': [(MODIFY_ADD, [member_dn])]}
        self._write('modify', group_dn, lambda: self.connection.modify(group_dn, changes))

    def get_connection_stats(self) -> Dict[str, Any]:
        """
        Get connection settings and status.

        Returns:
            Dictionary with connection information
        """
        stats = {
            'connected': self._connected,
            'server_url': self.server_url,
            'use_ssl': self.use_ssl,
            'start_tls': self.start_tls,
            'verify_ssl': self.verify_ssl,
            'bind_dn': self.bind_dn,
            'user_base_dn': self.user_base_dn,
            'group_base_dn': self.group_base_dn
        }

        if self.connection:
            stats.update({
                'server_host': getattr(self.connection.server, 'host', None),
                'server_port': getattr(self.connection.server, 'port', None),
                'bound': getattr(self.connection, 'bound', False),
                'tls_started': getattr(self.connection, 'tls_started', False)
            })

        return stats

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
