"""Path management for kindplane.

Well-known file locations used by the CLI and the credential sources.
All of them can be redirected with the usual environment variables.
"""

import os
from pathlib import Path

# Base directory for kindplane user settings
KINDPLANE_DIR = Path.home() / ".kindplane"

# User-level CLI settings file
SETTINGS_FILE = KINDPLANE_DIR / "config.yaml"

# Project configuration file looked up in the working directory
DEFAULT_CONFIG_FILE = "kindplane.yaml"


def kubeconfig_path() -> Path:
    """Get the kubeconfig path, honouring $KUBECONFIG.

    Only the first entry of a multi-path $KUBECONFIG is used.
    """
    env_path = os.environ.get("KUBECONFIG")
    if env_path:
        return Path(env_path.split(os.pathsep)[0])
    return Path.home() / ".kube" / "config"


def aws_credentials_path() -> Path:
    """Get the AWS shared credentials file path.

    Honours $AWS_SHARED_CREDENTIALS_FILE, falling back to ~/.aws/credentials.
    """
    env_path = os.environ.get("AWS_SHARED_CREDENTIALS_FILE")
    if env_path:
        return Path(env_path)
    return Path.home() / ".aws" / "credentials"
