from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from app.config import Settings, get_settings
from chain.rpc import RpcClient
from ds.fetcher import DsQueryCache
from manifest.loader import get_action, load_chain_config, load_manifest
from manifest.types import Action, ChainConfig, Manifest
from session.store import SessionStore, get_session_store
from workflow.form import select_quick_actions
from workflow.runner import ActionRunner

logger = logging.getLogger(__name__)


class RunNotFoundError(KeyError):
    pass


class RunsService:
    """
    In-process registry of open workflow runs over one manifest + chain.

    Runs share the transport, the DS cache and the session store.
    """

    def __init__(
        self,
        manifest: Manifest,
        chain: Optional[ChainConfig],
        *,
        rpc: Optional[RpcClient] = None,
        session: Optional[SessionStore] = None,
        settings: Optional[Settings] = None,
    ):
        self.manifest = manifest
        self.chain = chain
        self.settings = settings or get_settings()
        self.rpc = rpc or RpcClient(timeout=self.settings.http_timeout_sec)
        self.session = session or get_session_store()
        self.ds_cache = DsQueryCache(self.rpc, chain, settings=self.settings)
        self._runs: Dict[str, ActionRunner] = {}

    def list_actions(self, *, quick: bool = False) -> List[Action]:
        if quick:
            return select_quick_actions(self.manifest.actions)
        return [a for a in self.manifest.actions if not a.hidden]

    async def open_run(
        self,
        action_id: str,
        *,
        prefilled: Optional[Mapping[str, Any]] = None,
        account: Optional[Mapping[str, Any]] = None,
    ) -> ActionRunner:
        action = get_action(self.manifest, action_id)
        runner = ActionRunner(
            action,
            chain=self.chain,
            rpc=self.rpc,
            ds_cache=self.ds_cache,
            session=self.session,
            settings=self.settings,
            account=account,
            bucket=self.settings.fee_bucket,
        )
        self._runs[runner.state.run_id] = runner
        try:
            await runner.open(prefilled)
        except Exception:
            self.discard(runner.state.run_id)
            raise
        logger.info("Run %s opened for action %s", runner.state.run_id, action_id)
        return runner

    def get_run(self, run_id: str) -> ActionRunner:
        runner = self._runs.get(run_id)
        if runner is None:
            raise RunNotFoundError(run_id)
        return runner

    def discard(self, run_id: str) -> None:
        runner = self._runs.pop(run_id, None)
        if runner is not None:
            runner.close()

    async def resume_pending_runs(self) -> List[str]:
        """
        Settle every run suspended on unlock. Returns ids of runs that executed.
        """
        resumed: List[str] = []
        for run_id, runner in list(self._runs.items()):
            if not runner.state.pending_resume:
                continue
            before = runner.state.executions
            await runner.drain()
            if runner.state.executions > before:
                resumed.append(run_id)
        return resumed

    async def aclose(self) -> None:
        for run_id in list(self._runs):
            self.discard(run_id)
        await self.rpc.aclose()


_SERVICE: Optional[RunsService] = None


def build_runs_service(settings: Optional[Settings] = None) -> RunsService:
    settings = settings or get_settings()
    if not settings.manifest_path:
        raise RuntimeError("MANIFEST_PATH is not configured")
    manifest = load_manifest(settings.manifest_path)
    chain = load_chain_config(settings.chain_config_path) if settings.chain_config_path else None
    return RunsService(manifest, chain, settings=settings)


def get_runs_service() -> RunsService:
    """
    Process-wide service, built from settings on first use.
    """
    global _SERVICE

    if _SERVICE is None:
        _SERVICE = build_runs_service()
    return _SERVICE


def set_runs_service(service: Optional[RunsService]) -> None:
    global _SERVICE
    _SERVICE = service
