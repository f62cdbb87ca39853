"""
xraysync - Test Suite Package.

Unit tests for the configuration layer, canonical model and Jira/Xray
client modules. Shared fixtures live in conftest.py.
"""
