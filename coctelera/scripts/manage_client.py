"""
Out-of-band administration of API clients.

Usage:
    python -m coctelera.scripts.manage_client init-db
    python -m coctelera.scripts.manage_client list [--state requested]
    python -m coctelera.scripts.manage_client show <account_id>
    python -m coctelera.scripts.manage_client validate <account_id>
    python -m coctelera.scripts.manage_client enable <account_id>
    python -m coctelera.scripts.manage_client disable <account_id>
    python -m coctelera.scripts.manage_client issue <account_id>
    python -m coctelera.scripts.manage_client revoke <account_id>
    python -m coctelera.scripts.manage_client delete <account_id>

Reads DATABASE_URL and the token settings from environment / .env.
"""

import argparse
import sys

from coctelera.core.config import settings
from coctelera.core.exceptions import AccessControlError
from coctelera.core.logging_config import setup_logging
from coctelera.db.session import Database
from coctelera.models.api_user import AccountState, ApiUser
from coctelera.services.notifications import build_notifier
from coctelera.services.workflow import RequestWorkflow

COMMANDS = ("init-db", "list", "show", "validate", "enable", "disable", "issue", "revoke", "delete")


def _describe(account: ApiUser) -> str:
    return f"{account.id}  {account.state.value:<9}  {account.email}  {account.name or '-'}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="manage_client", description="Administer API clients")
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("account_id", nargs="?")
    parser.add_argument("--state", choices=[s.value for s in AccountState])
    return parser


def run(workflow: RequestWorkflow, command: str, account_id: str | None = None, state: str | None = None) -> int:
    if command == "list":
        items, total = workflow.accounts.list(state=AccountState(state) if state else None, limit=500)
        for account in items:
            print(_describe(account))
        print(f"{total} client(s)")
        return 0

    if not account_id:
        print(f"'{command}' needs an account id.")
        return 2

    if command == "show":
        print(_describe(workflow.accounts.get(account_id)))
        for token in workflow.tokens.list_for(account_id):
            print(f"  token created {token.created.isoformat()} valid until {token.valid_until.isoformat()}")
    elif command == "validate":
        print(_describe(workflow.confirm(account_id)))
    elif command == "enable":
        result = workflow.enable(account_id)
        print(_describe(workflow.accounts.get(account_id)))
        if result is not None and result.issued:
            print(f"Issued token valid until {result.record.valid_until.isoformat()}: {result.token}")
    elif command == "disable":
        print(_describe(workflow.disable(account_id)))
    elif command == "issue":
        result = workflow.issue_token(account_id)
        if not result.issued:
            print(f"Issuance refused: {result.outcome.value}")
            return 1
        print(f"Issued token valid until {result.record.valid_until.isoformat()}: {result.token}")
    elif command == "revoke":
        print(f"Revoked {workflow.revoke_tokens(account_id)} token(s)")
    elif command == "delete":
        workflow.delete_account(account_id)
        print(f"Client {account_id} deleted.")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(settings.LOG_LEVEL, stream=sys.stderr)
    database = Database.from_settings(settings)

    if args.command == "init-db":
        try:
            database.create_all()
        finally:
            database.dispose()
        print("Tables created.")
        return 0

    db = database.session()
    try:
        workflow = RequestWorkflow.from_session(db, settings, build_notifier(settings))
        return run(workflow, args.command, args.account_id, args.state)
    except AccessControlError as e:
        print(f"Error: {e.message}")
        return 1
    finally:
        db.close()
        database.dispose()


if __name__ == "__main__":
    sys.exit(main())
