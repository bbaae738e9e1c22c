"""Deploy monitor: read-only Rich views over deploy records.

Modules
-------
renderer
    ``DeployRenderer`` turns ``Deploy``, ``EnvironmentManifest`` and
    ``Upgrade`` records into Rich renderables for terminal display.
"""
