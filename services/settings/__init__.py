"""Live settings distribution backed by a ConfigMap and a Secret.

:class:`services.settings.manager.SettingsManager` is the entry point: it
lazily watches both resources, assembles
:class:`services.settings.models.DeploymentSettings` snapshots, persists
changes and notifies subscribers when either resource changes.
"""
