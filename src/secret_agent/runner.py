"""
Run a command with secrets injected and its output sanitized.

Secrets reach the child process two ways:

- --env SPEC, where SPEC is [bucket/]SECRET[:ENV_VAR], sets an environment
  variable in the child only (the bucket prefix is dropped from the name).
- {{NAME}} placeholders in the command are replaced with the value.

The command tokens are shell-quoted first and placeholders substituted
second, so a value is inserted verbatim into an already-quoted argument and
is never itself parsed as shell syntax. Both output streams are captured and
run through sanitize() before being written out.
"""

import logging
import os
import re
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence, TextIO

from .errors import InvalidNameError, SecretAgentIOError
from .sanitize import sanitize_bytes
from .vault import Vault, env_var_name

logger = logging.getLogger("secret_agent.runner")

# Exit code reported when the child was killed by a signal
SIGNAL_EXIT_CODE = 1

PLACEHOLDER_RE = re.compile(r"\{\{((?:[A-Za-z0-9_-]+/)?[A-Za-z_][A-Za-z0-9_-]*)\}\}")
_SAFE_TOKEN_RE = re.compile(r"[A-Za-z0-9_\-./:]+")


@dataclass(frozen=True)
class EnvSpec:
    secret: str
    env_var: str


@dataclass
class ResolvedSecrets:
    """Secrets fetched for one run.

    env: variables to set in the child.
    placeholders: {{NAME}} substitutions, keyed by secret name.
    redactions: (display name, value) pairs to scrub from output; a name may
        appear more than once.
    """

    env: dict[str, str] = field(default_factory=dict)
    placeholders: dict[str, str] = field(default_factory=dict)
    redactions: list[tuple[str, str]] = field(default_factory=list)

    def __repr__(self) -> str:
        return (
            f"ResolvedSecrets(env={sorted(self.env)}, "
            f"placeholders={sorted(self.placeholders)})"
        )


def parse_env_spec(spec: str) -> EnvSpec:
    """Parse '[bucket/]SECRET[:ENV_VAR]'."""
    secret, sep, env_var = spec.partition(":")
    if not sep:
        env_var = env_var_name(secret)

    if not secret:
        raise InvalidNameError(spec, "secret name cannot be empty")
    if not env_var or "=" in env_var:
        raise InvalidNameError(spec, f"'{env_var}' is not a valid environment variable name")
    return EnvSpec(secret, env_var)


def shell_quote(token: str) -> str:
    """
    Quote one argument for sh.

    Tokens made only of [A-Za-z0-9_-./:] pass through; anything else is
    single-quoted, with embedded single quotes written as '\\''.
    """
    if _SAFE_TOKEN_RE.fullmatch(token):
        return token
    return "'" + token.replace("'", "'\\''") + "'"


def build_command(tokens: Sequence[str]) -> str:
    """Join independently quoted tokens into one shell command string."""
    return " ".join(shell_quote(token) for token in tokens)


def find_placeholders(command: str) -> list[str]:
    """Names referenced as {{NAME}}, in order of first appearance."""
    seen = []
    for name in PLACEHOLDER_RE.findall(command):
        if name not in seen:
            seen.append(name)
    return seen


def substitute_placeholders(command: str, values: dict[str, str]) -> str:
    for name, value in values.items():
        command = command.replace("{{" + name + "}}", value)
    return command


def resolve_secrets(vault: Vault, env_specs: Sequence[EnvSpec], command: str) -> ResolvedSecrets:
    """
    Fetch every secret referenced by env specs and placeholders.

    Raises SecretNotFoundError on the first missing secret, before anything
    has been run.
    """
    resolved = ResolvedSecrets()
    fetched: dict[str, str] = {}

    for spec in env_specs:
        if spec.secret not in fetched:
            fetched[spec.secret] = vault.get(spec.secret)
        resolved.env[spec.env_var] = fetched[spec.secret]
        resolved.redactions.append((spec.env_var, fetched[spec.secret]))

    for name in find_placeholders(command):
        # Already fetched for --env: reuse it
        if name not in fetched:
            fetched[name] = vault.get(name)
        resolved.placeholders[name] = fetched[name]
        resolved.redactions.append((name, fetched[name]))

    logger.debug("Resolved %r", resolved)
    return resolved


def _exit_code(returncode: int) -> int:
    # Negative return codes mean the child died from a signal
    if returncode < 0:
        return SIGNAL_EXIT_CODE
    return returncode


def run_command(
    tokens: Sequence[str],
    env_specs: Sequence[str] = (),
    open_vault: Callable[[], Vault] = Vault.open,
    stdout: Optional[TextIO] = None,
    stderr: Optional[TextIO] = None,
) -> int:
    """
    Run `tokens` through the shell with secrets injected; return its exit code.

    The vault is only opened when the command references at least one secret.
    Without references the command runs with inherited stdio, exactly like a
    plain shell invocation.

    Raises:
        SecretNotFoundError: A referenced secret is missing (nothing is run).
        InvalidNameError: An env spec is malformed.
        SecretAgentIOError: The shell could not be started.
    """
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr

    specs = [parse_env_spec(spec) for spec in env_specs]
    command = build_command(tokens)

    if not specs and not find_placeholders(command):
        logger.debug("No secrets referenced; running command directly")
        try:
            return _exit_code(subprocess.run(command, shell=True).returncode)
        except OSError as e:
            raise SecretAgentIOError(f"failed to execute command: {e}") from e

    with open_vault() as vault:
        resolved = resolve_secrets(vault, specs, command)

    command = substitute_placeholders(command, resolved.placeholders)
    child_env = os.environ.copy()
    child_env.update(resolved.env)

    try:
        result = subprocess.run(command, shell=True, env=child_env, capture_output=True)
    except OSError as e:
        raise SecretAgentIOError(f"failed to execute command: {e}") from e

    out = sanitize_bytes(result.stdout, resolved.redactions)
    if out:
        stdout.write(out)
        stdout.flush()

    err = sanitize_bytes(result.stderr, resolved.redactions)
    if err:
        stderr.write(err)
        stderr.flush()

    return _exit_code(result.returncode)
