"""
tersh - command execution middleware with pluggable output summarizers.

tersh runs a command on behalf of an agent, lets a matching handler rewrite
the command and its environment, streams the output through that handler and
returns a short summary instead of the raw output.

Agents already know the commands. They do not need the noise.
"""

from __future__ import annotations

__version__ = "0.1.0"
