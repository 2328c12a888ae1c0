"""
CLI commands for ecsdeploy.

Command modules are imported on demand by :mod:`ecsdeploy.cli.main`.
"""
