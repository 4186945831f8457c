"""
dotvault -- keep local secrets in step with your password manager.

SSH keys, cloud credentials, config files and env secrets live on
every machine you touch. dotvault tracks them in one document and
pulls/pushes them against Bitwarden, 1Password or pass.
"""

import os

__version__ = "0.1.0"

DOTVAULT_HOME = os.environ.get("DOTVAULT_HOME", "~/.dotvault")
