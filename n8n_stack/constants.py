"""Centralized constants for the n8n stack tooling."""

# Compose services
N8N_SERVICE = "n8n"
POSTGRES_SERVICE = "postgres"

# Named volumes owned by the container runtime, in snapshot/restore order
N8N_DATA_VOLUME = "n8n-data"
POSTGRES_DATA_VOLUME = "postgres-data"
KNOWN_VOLUMES: tuple[str, ...] = (N8N_DATA_VOLUME, POSTGRES_DATA_VOLUME)

# Default file locations relative to the project root
DEFAULT_COMPOSE_FILE = "compose.yml"
DEFAULT_ENV_FILE = ".env"
NGINX_DIR = "nginx"
LOCAL_FILES_DIR = "local-files"
NGINX_TEMPLATE = "nginx/templates/n8n.conf.j2"
NGINX_SSL_INCLUDE = "nginx/files/includes/ssl.conf"
ACME_DEPLOY_HOOK = "nginx/files/acme.sh/deploy/nginx.sh"
NGINX_SSL_DIR = "nginx/files/ssl"
BOOTSTRAP_PLAYBOOK = "nginx/bootstrap.yml"

# Bundle layout
PROJECT_ARCHIVE = "project.tgz"
SNAPSHOT_SUFFIX = ".tgz"
BUNDLE_PREFIX = "n8n-bundle-"
EXPORT_DIR_PREFIX = "export-"
IMPORT_SCRATCH_PREFIX = "n8n-import-"
BUNDLE_TIMESTAMP_FORMAT = "%Y-%m-%d-%H%M%S"

# Helper container used to read from / write into volumes
DEFAULT_HELPER_IMAGE = "busybox"
VOLUME_MOUNT = "/data"
BACKUP_MOUNT = "/backup"

# The key n8n uses to encrypt stored credentials; must never change for existing data
ENCRYPTION_KEY_VAR = "N8N_ENCRYPTION_KEY"

# Host services that commonly hold ports 80/443
CONFLICTING_HOST_SERVICES = ("nginx", "apache2")
