import logging
from typing import Dict, Optional, Tuple
from pydantic import BaseModel
from sqlalchemy import update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from storebot.models.flow_state import FlowKind, FlowStateRecord
from storebot.schemas.states import STATE_MODELS, KIND_OF_MODEL

logger = logging.getLogger(__name__)

class FlowStore:
    """
    Durable per-user flow states.

    Writes only flush unless `commit=True`, so callers can group several
    writes (e.g. both halves of a chat pair) into one transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _record(self, user_id: str, kind: FlowKind) -> Optional[FlowStateRecord]:
        result = await self.db.execute(
            select(FlowStateRecord)
            .filter(FlowStateRecord.user_id == str(user_id), FlowStateRecord.kind == kind)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def get(self, user_id: str, kind: FlowKind) -> Optional[BaseModel]:
        state, _ = await self.get_versioned(user_id, kind)
        return state

    async def get_versioned(self, user_id: str, kind: FlowKind) -> Tuple[Optional[BaseModel], Optional[int]]:
        record = await self._record(user_id, kind)
        if not record:
            return None, None
        return STATE_MODELS[kind].model_validate(record.data), record.version

    async def all_for_user(self, user_id: str) -> Dict[FlowKind, BaseModel]:
        result = await self.db.execute(
            select(FlowStateRecord)
            .filter(FlowStateRecord.user_id == str(user_id))
            .execution_options(populate_existing=True)
        )
        return {
            r.kind: STATE_MODELS[r.kind].model_validate(r.data)
            for r in result.scalars().all()
        }

    async def has_any(self, user_id: str) -> bool:
        return bool(await self.all_for_user(user_id))

    async def put(self, user_id: str, state: BaseModel, commit: bool = True):
        kind = KIND_OF_MODEL[type(state)]
        data = state.model_dump(mode="json")
        record = await self._record(user_id, kind)
        if record:
            record.data = data
            record.version = record.version + 1
        else:
            self.db.add(FlowStateRecord(user_id=str(user_id), kind=kind, data=data, version=1))
        if commit:
            await self.db.commit()
        else:
            await self.db.flush()

    async def create_if_absent(self, user_id: str, state: BaseModel, commit: bool = True) -> bool:
        """Insert a new state; False if the user already has one of that kind."""
        kind = KIND_OF_MODEL[type(state)]
        if await self._record(user_id, kind):
            return False
        self.db.add(FlowStateRecord(
            user_id=str(user_id), kind=kind, data=state.model_dump(mode="json"), version=1
        ))
        try:
            if commit:
                await self.db.commit()
            else:
                await self.db.flush()
        except IntegrityError:
            # Lost an insert race against another request
            await self.db.rollback()
            logger.info(f"Flow state {kind.value}/{user_id} created concurrently")
            return False
        return True

    async def compare_and_set(self, user_id: str, state: BaseModel, expected_version: int, commit: bool = True) -> bool:
        """Overwrite the state only if nobody wrote it since `expected_version` was read."""
        kind = KIND_OF_MODEL[type(state)]
        result = await self.db.execute(
            update(FlowStateRecord)
            .where(
                FlowStateRecord.user_id == str(user_id),
                FlowStateRecord.kind == kind,
                FlowStateRecord.version == expected_version,
            )
            .values(data=state.model_dump(mode="json"), version=expected_version + 1)
        )
        if result.rowcount != 1:
            return False
        if commit:
            await self.db.commit()
        return True

    async def delete(self, user_id: str, kind: FlowKind, commit: bool = True) -> bool:
        """Remove a state; missing states are fine. Returns whether a row was removed."""
        result = await self.db.execute(
            delete(FlowStateRecord)
            .where(FlowStateRecord.user_id == str(user_id), FlowStateRecord.kind == kind)
        )
        if commit:
            await self.db.commit()
        return result.rowcount > 0

    async def take(self, user_id: str, kind: FlowKind) -> Optional[BaseModel]:
        """
        Read and delete a state in the current transaction. Only one of two
        concurrent callers gets the state back, which makes confirm buttons
        safe against double taps. Caller commits.
        """
        state = await self.get(user_id, kind)
        if state is None:
            return None
        if not await self.delete(user_id, kind, commit=False):
            return None
        return state
