"""
secret-agent - a local vault that keeps secrets out of AI agent traces.

Secrets are encrypted at rest and only ever reach the commands that need them.

Features:
- exec: Run commands with secrets injected as env vars or {{NAME}} placeholders
- Output sanitization: secret values (and their base64/url encodings) are
  replaced with [REDACTED:NAME] before anything is printed
- list: Show stored names (values never shown)
- create/import: Generate or read secrets without echoing them

The master key comes from SECRET_AGENT_PASSPHRASE, the OS keychain, or a
permission-restricted key file.
"""

__version__ = "0.1.0"
