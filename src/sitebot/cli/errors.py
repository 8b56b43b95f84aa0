"""sitebot rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from sitebot.cli.errors import err_no_db
    console.print(err_no_db(".sitebot.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "cohere": "COHERE_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "azure": "AZURE_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".sitebot.db") -> str:
    """No database found at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  sitebot init"
    )


def err_config(message: str) -> str:
    """sitebot.yaml or the global config could not be loaded."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix sitebot.yaml (or ~/.sitebot/config.yaml) and retry."
    )


def err_ssrf_blocked(url: str) -> str:
    """URL resolves to a private/reserved address."""
    return (
        f"[red]Error:[/] URL resolves to private address (SSRF protection): '{url}'\n"
        "  Use a publicly reachable URL."
    )


def err_invalid_input(message: str) -> str:
    """The source or chatbot input was rejected before anything was stored."""
    return f"[red]Error:[/] {message}"


def err_chatbot_not_found(chatbot_id: str, workspace_id: str) -> str:
    return (
        f"[red]Error:[/] Chatbot '{chatbot_id}' not found in workspace '{workspace_id}'.\n"
        "  Run:  sitebot chatbot list  to see all chatbots."
    )


def err_chatbot_inactive(name: str) -> str:
    """Chat requires a trained (ACTIVE) chatbot."""
    return (
        f"[red]Error:[/] Chatbot '{name}' is not active yet.\n"
        "  Add a source first:  sitebot source add-text <chatbot-id> --title ... --content ..."
    )


def err_source_not_found(source_id: str) -> str:
    """Data source not found in database."""
    return (
        f"[yellow]Source not found:[/] '{source_id}' is not in the knowledge base.\n"
        "  Run:  sitebot source list <chatbot-id>  to see all sources."
    )


def err_webhook_not_found(endpoint_id: str) -> str:
    return (
        f"[red]Error:[/] Webhook endpoint '{endpoint_id}' not found.\n"
        "  Run:  sitebot webhooks list  to see registered endpoints."
    )


def err_ingest_failed(name: str, message: str | None) -> str:
    """The pipeline ran but the source ended in ERROR."""
    return (
        f"[red]Error:[/] Ingestion of '{name}' failed: {message or 'unknown error'}\n"
        "  Check the provider API key and the source, then retry."
    )
