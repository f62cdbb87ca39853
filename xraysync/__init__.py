"""
Xray Synchronization - Core Source Package.

This package contains the core logic for:
- Configuration: Connector settings and capability resolution.
- Model: Canonical test cases, steps and typed session state.
- Jira Client: Command building, response mapping, bucketed dispatch
  and post-run result propagation against Jira/Xray.
"""

__version__ = "1.0.0"
