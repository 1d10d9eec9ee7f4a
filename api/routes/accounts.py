"""
Account Routes

Lists registered accounts with their live connection state and adds new ones
through the provisioner, so runtime additions follow the same exclusion
policy and normalisation as configured accounts.
"""

import logging

from fastapi import APIRouter, Depends, status

from api.dependencies import get_onebox
from api.models.requests import AddAccountRequest
from api.models.responses import success_response
from onebox.application import OneboxApplication
from onebox.models import AccountDescriptor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/accounts", tags=["Accounts"])


@router.get("", summary="List registered accounts")
async def list_accounts(onebox: OneboxApplication = Depends(get_onebox)):
    connection_status = onebox.source.connection_status()
    accounts = [
        {**account.to_dict(), "is_connected": bool(connection_status.get(account.id, False))}
        for account in onebox.source.list_accounts()
    ]
    return success_response(accounts)


@router.post("", status_code=status.HTTP_201_CREATED, summary="Add an account")
async def add_account(body: AddAccountRequest, onebox: OneboxApplication = Depends(get_onebox)):
    descriptor = AccountDescriptor(
        user=body.user,
        host=body.host,
        port=body.port,
        label=body.label,
    )
    account = await onebox.provisioner.provision_one(descriptor, body.password)
    return success_response(account.to_dict(), message=f"Account {account.label} added")
