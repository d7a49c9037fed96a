"""Key layout of the settings ConfigMap and Secret."""

from __future__ import annotations

# ConfigMap keys
URL_KEY = "url"
DEX_CONFIG_KEY = "dex.config"
OIDC_CONFIG_KEY = "oidc.config"
REPOSITORIES_KEY = "repositories"
REPOSITORY_CREDENTIALS_KEY = "repository.credentials"
HELM_REPOSITORIES_KEY = "helm.repositories"
RESOURCE_CUSTOMIZATIONS_KEY = "resource.customizations"
RESOURCE_EXCLUSIONS_KEY = "resource.exclusions"
RESOURCE_INCLUSIONS_KEY = "resource.inclusions"
APP_INSTANCE_LABEL_KEY = "application.instanceLabelKey"
CONFIG_MANAGEMENT_PLUGINS_KEY = "configManagementPlugins"

# Secret keys
ADMIN_PASSWORD_HASH_KEY = "admin.password"
ADMIN_PASSWORD_MTIME_KEY = "admin.passwordMtime"
SERVER_SIGNATURE_KEY = "server.secretkey"
SERVER_CERTIFICATE_KEY = "tls.crt"
SERVER_PRIVATE_KEY_KEY = "tls.key"
WEBHOOK_GITHUB_SECRET_KEY = "webhook.github.secret"
WEBHOOK_GITLAB_SECRET_KEY = "webhook.gitlab.secret"
WEBHOOK_BITBUCKET_UUID_KEY = "webhook.bitbucket.uuid"

# Legacy per-repository secrets
SECRET_TYPE_LABEL_KEY = "argocd.argoproj.io/secret-type"
SECRET_TYPE_REPOSITORY = "repository"
LEGACY_REPOSITORY_URL_KEY = "repository"
LEGACY_USERNAME_KEY = "username"
LEGACY_PASSWORD_KEY = "password"
LEGACY_SSH_PRIVATE_KEY_KEY = "sshPrivateKey"

DEFAULT_APP_INSTANCE_LABEL_KEY = "app.kubernetes.io/instance"
SECRET_REFERENCE_PREFIX = "$"
