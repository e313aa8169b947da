"""Inkwell rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from inkwell.cli.errors import err_no_db
    console.print(err_no_db(".inkwell.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

_ENV_VARS = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
}


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_var = _ENV_VARS.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".inkwell.db") -> str:
    """No workspace database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  inkwell init"
    )


def err_config(message: str) -> str:
    """inkwell.yaml or the global config is invalid."""
    return f"[red]Error:[/] Invalid configuration.\n  {message}"


def err_schema_too_new(found: int, supported: int) -> str:
    """Database was written by a newer inkwell."""
    return (
        f"[red]Error:[/] Database schema v{found} is newer than this inkwell (v{supported}).\n"
        "  Upgrade:  pip install --upgrade inkwell"
    )


def err_file_not_found(path: str) -> str:
    return (
        f"[red]Error:[/] File not found: '{path}'\n"
        "  Check the path and try again."
    )


def err_fragment_not_found(fragment_id: str) -> str:
    return (
        f"[yellow]Fragment not found:[/] '{fragment_id}' is not in the index.\n"
        "  Run:  inkwell status  to see what is indexed."
    )


def err_workspace_not_found(workspace_id: str) -> str:
    return (
        f"[yellow]Workspace not found:[/] '{workspace_id}'.\n"
        "  Run:  inkwell status  to list workspaces."
    )


def err_patch_not_found(patch_id: str) -> str:
    return (
        f"[red]Error:[/] Patch '{patch_id}' not found.\n"
        "  Run:  inkwell patches list"
    )


def err_patch_resolved(patch_id: str, status: str) -> str:
    """Patch is already accepted or rejected."""
    return (
        f"[red]Error:[/] Patch '{patch_id}' is already {status}.\n"
        "  Resolved patches cannot change. Run:  inkwell patches import <file>"
    )


def err_invalid_patch_file(path: str, reason: str) -> str:
    return (
        f"[red]Error:[/] Cannot import patch file '{path}': {reason}\n"
        "  Expected YAML with an 'operations:' list, e.g.\n"
        "    operations:\n"
        "      - op: update-field\n"
        "        entity_id: char-1\n"
        "        field: summary\n"
        "        new_value: ..."
    )


def warn_embeddings_offline(count: int, model: str) -> str:
    """Shown when some fragments were stored without a vector."""
    return (
        f"[yellow]⚠[/] Embeddings offline: {count} fragment(s) stored without a vector ({model}).\n"
        "  They are skipped by queries until re-indexed:  inkwell index <file> --force"
    )
