"""
Main orchestrator for OU Group Sync.

This module runs one reconciliation: read the OU, user and group listings,
index OU descriptions, recreate one group per described OU and add every user
to the groups of its ancestor OUs.
"""

import sys
import json
import logging
import argparse
from datetime import datetime
from typing import Dict, Any, Optional

from ou_group_sync.config import load_config, ConfigurationError
from ou_group_sync.directory import (
    DirectoryClient,
    DirectoryConnectionError,
    DirectoryQueryError
)
from ou_group_sync.dn import DistinguishedNameError
from ou_group_sync.index import build_display_name_map
from ou_group_sync.logging_setup import setup_logging
from ou_group_sync.membership import MembershipResolver
from ou_group_sync.models import SyncResult
from ou_group_sync.notifications import (
    format_runtime,
    send_failure_notification,
    send_directory_connection_failure,
    send_success_summary
)
from ou_group_sync.reconciler import GroupReconciler

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_CONFIGURATION_ERROR = 2
EXIT_CONNECTION_ERROR = 3
EXIT_UNEXPECTED_ERROR = 4
EXIT_READ_ERROR = 5
EXIT_WRITE_ERROR = 6


class SyncError(Exception):
    """Raised when a reconcile or fill pass stops on a directory write failure."""

    def __init__(self, stage: str, result: SyncResult):
        self.stage = stage
        self.result = result
        super().__init__(f"{stage} failed: {result.error}")


class SyncOrchestrator:
    """
    Runs the OU to group synchronization end to end.

    Every read happens before the first write; the first failure of any kind
    ends the run and nothing written before it is rolled back.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize sync orchestrator.

        Args:
            config_path: Path to configuration file
        """
        self.config = None
        self.directory = None
        self.config_path = config_path

        self.sync_stats = {
            'ous_listed': 0,
            'ous_indexed': 0,
            'users_listed': 0,
            'groups_listed': 0,
            'groups_deleted': 0,
            'groups_created': 0,
            'members_added': 0,
            'users_skipped': 0,
            'start_time': None,
            'end_time': None,
            'runtime_seconds': 0
        }

    def run(self) -> int:
        """
        Run the complete synchronization process.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            self.sync_stats['start_time'] = datetime.now()

            self._load_configuration()
            setup_logging(self.config.get('logging', {}))

            logger.info("Starting OU Group Sync")

            self._connect_directory()
            self._synchronize()

            self._finish_timing()
            self._log_sync_summary()
            self._send_success_notification()

            logger.info("Sync completed successfully")
            return EXIT_SUCCESS

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIGURATION_ERROR
        except DirectoryConnectionError as e:
            logger.error(f"Directory connection error: {e}")
            self._send_connection_failure(str(e))
            return EXIT_CONNECTION_ERROR
        except (DirectoryQueryError, DistinguishedNameError) as e:
            logger.error(f"Directory read error: {e}")
            self._send_failure_notification("Directory Read Failed", str(e))
            return EXIT_READ_ERROR
        except SyncError as e:
            self._finish_timing()
            logger.error(f"Sync aborted: {e}")
            self._log_sync_summary()
            self._send_failure_notification(f"{e.stage} Failed", str(e.result.error))
            return EXIT_WRITE_ERROR
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            self._send_failure_notification("Sync Failed", f"Unexpected error: {e}")
            return EXIT_UNEXPECTED_ERROR
        finally:
            self._cleanup()

    def _load_configuration(self):
        """Load and validate configuration."""
        try:
            self.config = load_config(self.config_path)
            logger.debug("Configuration loaded successfully")
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}")

    def _connect_directory(self):
        """Open and bind the directory connection."""
        self.directory = DirectoryClient(self.config['ldap'])
        try:
            self.directory.connect()
        except DirectoryConnectionError:
            self.directory = None
            raise

    def _synchronize(self):
        """Read the snapshot, then reconcile groups and fill memberships."""
        ldap_config = self.config['ldap']

        organizational_units = self.directory.search_organizational_units()
        users = self.directory.search_users()
        existing_groups = self.directory.search_mail_groups()

        self.sync_stats['ous_listed'] = len(organizational_units)
        self.sync_stats['users_listed'] = len(users)
        self.sync_stats['groups_listed'] = len(existing_groups)

        display_names = build_display_name_map(organizational_units)
        self.sync_stats['ous_indexed'] = len(display_names)

        reconciler = GroupReconciler(self.directory, ldap_config['group_base_dn'])
        reconcile_result = reconciler.reconcile(display_names, existing_groups)
        self._record_result(reconcile_result)
        if not reconcile_result.ok:
            raise SyncError("Group Reconciliation", reconcile_result)

        resolver = MembershipResolver(
            self.directory,
            ldap_config['group_base_dn'],
            ldap_config['user_base_ou']
        )
        fill_result = resolver.fill(users, display_names)
        self._record_result(fill_result)
        if not fill_result.ok:
            raise SyncError("Membership Fill", fill_result)

    def _record_result(self, result: SyncResult):
        for key in ('groups_deleted', 'groups_created', 'members_added', 'users_skipped'):
            self.sync_stats[key] += getattr(result, key)

    def _finish_timing(self):
        self.sync_stats['end_time'] = datetime.now()
        self.sync_stats['runtime_seconds'] = (
            self.sync_stats['end_time'] - self.sync_stats['start_time']
        ).total_seconds()

    def _notifications_config(self) -> Dict[str, Any]:
        return (self.config or {}).get('notifications', {})

    def _send_failure_notification(self, title: str, error_message: str):
        """Send email notification for failures."""
        try:
            send_failure_notification(title, error_message, self._notifications_config(),
                                      {'Progress': self._progress_line()})
        except Exception as e:
            logger.error(f"Failed to send failure notification: {e}")

    def _send_connection_failure(self, error_message: str):
        """Send email notification for a directory connection failure."""
        try:
            send_directory_connection_failure(error_message, self._notifications_config())
        except Exception as e:
            logger.error(f"Failed to send connection failure notification: {e}")

    def _send_success_notification(self):
        """Send email notification for successful sync."""
        try:
            send_success_summary(self.sync_stats, self._notifications_config())
        except Exception as e:
            logger.error(f"Failed to send success notification: {e}")

    def _progress_line(self) -> str:
        stats = self.sync_stats
        return (f"{stats['groups_deleted']} groups deleted, {stats['groups_created']} created, "
                f"{stats['members_added']} members added")

    def _log_sync_summary(self):
        """Log final synchronization statistics."""
        stats = self.sync_stats

        logger.info("=== Sync Summary ===")
        logger.info(f"Total runtime: {format_runtime(stats['runtime_seconds'])}")
        logger.info(f"OUs listed: {stats['ous_listed']} ({stats['ous_indexed']} with a description)")
        logger.info(f"Users listed: {stats['users_listed']}")
        logger.info(f"Existing groups listed: {stats['groups_listed']}")
        logger.info(f"Groups deleted: {stats['groups_deleted']}")
        logger.info(f"Groups created: {stats['groups_created']}")
        logger.info(f"Members added: {stats['members_added']}")
        logger.info(f"Users without a managed group: {stats['users_skipped']}")

    def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check of the sync system.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self._load_configuration()
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except ConfigurationError as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'
            return health_status

        test_client = DirectoryClient(self.config['ldap'])
        try:
            test_client.connect()
            health_status['checks']['directory'] = {
                'status': 'pass',
                'message': 'Directory bind successful',
                'connection': test_client.get_connection_stats()
            }
        except DirectoryConnectionError as e:
            health_status['checks']['directory'] = {
                'status': 'fail',
                'message': f'Directory connection failed: {e}'
            }
            health_status['status'] = 'unhealthy'
        finally:
            test_client.disconnect()

        notifications_config = self._notifications_config()
        if notifications_config.get('enable_email', False):
            required_fields = ['smtp_server', 'email_from', 'email_to']
            missing_fields = [f for f in required_fields if not notifications_config.get(f)]
            if missing_fields:
                health_status['checks']['notifications'] = {
                    'status': 'fail',
                    'message': f'Missing notification config: {missing_fields}'
                }
                health_status['status'] = 'unhealthy'
            else:
                health_status['checks']['notifications'] = {
                    'status': 'pass',
                    'message': 'Email notification configuration valid'
                }
        else:
            health_status['checks']['notifications'] = {
                'status': 'skip',
                'message': 'Email notifications disabled'
            }

        return health_status

    def _cleanup(self):
        """Release the directory connection."""
        if self.directory:
            self.directory.disconnect()
            self.directory = None


def main():
    """Main entry point for the application."""
    parser = argparse.ArgumentParser(description='Mirror organizational units as mail-enabled security groups')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--health-check', action='store_true',
                        help='Perform health check instead of sync')
    parser.add_argument('--test-email', action='store_true',
                        help='Send test email notification')

    args = parser.parse_args()

    orchestrator = SyncOrchestrator(config_path=args.config)

    if args.health_check:
        health_status = orchestrator.health_check()
        print(json.dumps(health_status, indent=2, default=str))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    elif args.test_email:
        from ou_group_sync.notifications import send_test_email
        try:
            orchestrator._load_configuration()
        except ConfigurationError as e:
            print(f"Error testing email: {e}")
            sys.exit(1)

        if send_test_email(orchestrator._notifications_config()):
            print("Test email sent successfully")
            sys.exit(0)
        else:
            print("Failed to send test email")
            sys.exit(1)

    else:
        sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
