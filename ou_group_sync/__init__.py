"""
OU Group Sync - Mirror Active Directory organizational units as mail-enabled security groups.

For every OU carrying a description, a global security group named after the
description is recreated under a group base container and filled with the
enabled, mail-capable users located below that OU.
"""

__version__ = "1.0.0"
__author__ = "OU Group Sync Team"
