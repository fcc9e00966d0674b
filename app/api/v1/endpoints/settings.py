from fastapi import APIRouter

from app.api.deps import DB, CurrentActor
from app.schemas.setting import DepositThresholdResponse, DepositThresholdUpdate
from app.services.settings_service import SettingsService


router = APIRouter(tags=["Settings"])


@router.get("/deposit-threshold", response_model=DepositThresholdResponse)
async def get_deposit_threshold(
    db: DB,
    actor: CurrentActor,
):
    value = await SettingsService(db).get_deposit_threshold_pct()
    return DepositThresholdResponse(deposit_threshold_pct=value)


@router.put("/deposit-threshold", response_model=DepositThresholdResponse)
async def update_deposit_threshold(
    data: DepositThresholdUpdate,
    db: DB,
    actor: CurrentActor,
):
    """
    Set the deposit share required before the factory may accept an order.
    Requires: ADMIN
    """
    value = await SettingsService(db).set_deposit_threshold_pct(data.deposit_threshold_pct, actor)
    return DepositThresholdResponse(deposit_threshold_pct=value)
