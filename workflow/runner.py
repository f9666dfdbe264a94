from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

from app.config import Settings, get_settings
from app.core.context import bound_run_id
from chain.chains import host_or_empty
from chain.rpc import RemoteCall, RPCError, RpcClient
from ds.fetcher import DsQueryCache, load_ds_map
from fees.engine import FeeUnavailableError, resolve_action_fee
from fields.helpers import default_value, flatten_fields, is_empty
from fields.registry import render_field
from fields.types import FieldProps
from fields.validators import validate_fields
from manifest.types import Action, ChainConfig, FieldSpec
from session.idle import attach_idle_renew
from session.store import SessionStore, get_session_store
from templating import collect_dependencies, evaluate
from workflow.context import build_template_context
from workflow.debounce import Debouncer
from workflow.form import (
    build_confirm_summary,
    build_payload_from_action,
    fields_for_action,
    fields_for_step,
    has_confirmation,
    normalize_form_for_action,
    visible_fields,
)
from workflow.notifications import Notifier, resolve_notification
from workflow.stages import InvalidStageTransition, Stage
from workflow.state import (
    ExecutionResult,
    WorkflowRunState,
    clear_pending_resume,
    set_pending_resume,
)

logger = logging.getLogger(__name__)

FEE_UNAVAILABLE = "fee unavailable"
FORM_PREFIX = "form."


def requires_auth(action: Action) -> bool:
    """
    Explicit `auth.type`, else admin-host submits need an unlocked session.
    """
    if action.auth is not None:
        return action.auth.type == "sessionPassword"
    return action.submit is not None and action.submit.base == "admin"


def unlock_ttl(chain: Optional[ChainConfig], settings: Settings) -> int:
    if chain is not None and chain.session.unlock_timeout_sec:
        return chain.session.unlock_timeout_sec
    return settings.session_unlock_timeout_sec


def is_success(status: int, body: Any) -> bool:
    """
    HTTP 2xx and no explicit failure marker in the body.
    """
    if not 200 <= status < 300:
        return False
    if not isinstance(body, Mapping):
        return True
    if body.get("error"):
        return False
    if body.get("ok") is False or body.get("success") is False:
        return False
    code = body.get("status")
    if isinstance(code, int) and not isinstance(code, bool) and code >= 400:
        return False
    return True


def _response_body(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return text


def _tx_hash(body: Any) -> Optional[str]:
    if isinstance(body, str):
        return body.strip().strip('"') or None
    if isinstance(body, Mapping):
        for k in ("hash", "txHash", "tx_hash"):
            if isinstance(body.get(k), str):
                return body[k]
    return None


def _field_ds_keys(field: FieldSpec) -> List[str]:
    return list(field.ds.keys()) if field.ds else []


class ActionRunner:
    """
    Drives one manifest action through form -> (confirm) -> executing -> result.

    - Holds the run's WorkflowRunState; everything else is rebuilt per call
    - Execution needing an unlocked session suspends and resumes once on unlock
    - Form edits touching a DS dependency reload the action's data sources
      after the debounce window
    """

    def __init__(
        self,
        action: Action,
        *,
        chain: Optional[ChainConfig],
        rpc: RpcClient,
        ds_cache: Optional[DsQueryCache] = None,
        session: Optional[SessionStore] = None,
        settings: Optional[Settings] = None,
        account: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
        notifier: Optional[Notifier] = None,
        run_id: Optional[str] = None,
        bucket: Optional[str] = None,
    ):
        self.action = action
        self.chain = chain
        self.rpc = rpc
        self.settings = settings or get_settings()
        self.ds_cache = ds_cache or DsQueryCache(rpc, chain, settings=self.settings)
        self.session = session or get_session_store()
        self.account = dict(account) if account else None
        self.params = dict(params or {})
        self.notifier = notifier
        self.bucket = bucket

        self.state = WorkflowRunState(run_id=run_id or str(uuid.uuid4()), action_id=action.id)

        self._ds_config = self._merged_ds_config()
        self._ds_watch = {
            dep[len(FORM_PREFIX):].split(".", 1)[0]
            for dep in collect_dependencies(self._ds_config)
            if dep.startswith(FORM_PREFIX)
        }
        self._debouncer = Debouncer(self.settings.form_debounce_ms, self.reload_ds)
        self._resume_task: Optional[asyncio.Task] = None
        self._unsubscribe = self.session.subscribe(self._on_session_change)

    # ---------------------------
    # context
    # ---------------------------

    def _merged_ds_config(self) -> Dict[str, Any]:
        config: Dict[str, Any] = dict(self.action.ds)
        for f in flatten_fields(fields_for_action(self.action)):
            for key, params in (f.ds or {}).items():
                config.setdefault(key, params)
        return config

    def context(self, form: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return build_template_context(
            form=self.state.form if form is None else form,
            chain=self.chain,
            account=self.account,
            fee=self.state.fee,
            session_password=self.session.password,
            ds=self.state.ds,
            params=self.params,
        )

    def _field_ds_value(self, field: FieldSpec) -> Any:
        for key in _field_ds_keys(field):
            if self.state.ds.get(key) is not None:
                return self.state.ds[key]
        return None

    def _notify(self, key: str, result: Any = None) -> None:
        node = resolve_notification(self.action, key, self.context(), result)
        if node is None:
            return
        self.state.notifications.append(node)
        if self.notifier is not None:
            try:
                self.notifier(key, node)
            except Exception:
                logger.exception("Notifier failed for %s", key)

    def current_fields(self) -> List[FieldSpec]:
        return visible_fields(fields_for_step(self.action, self.state.step_index), self.context())

    # ---------------------------
    # lifecycle
    # ---------------------------

    async def open(self, prefilled: Optional[Mapping[str, Any]] = None) -> WorkflowRunState:
        """
        Load data sources, resolve the fee, then fill defaults over `prefilled`.
        """
        with bound_run_id(self.state.run_id, self.action.id):
            self.state.form = dict(prefilled or {})
            await self.reload_ds()
            await self.refresh_fee()
            self._populate_defaults()
            attach_idle_renew(unlock_ttl(self.chain, self.settings), self.session)
            logger.info("Opened action %s", self.action.id)
            self._notify("onInit")
        return self.state

    async def reload_ds(self) -> None:
        self.state.ds = await load_ds_map(self.ds_cache, self._ds_config, self.context())

    async def refresh_fee(self) -> None:
        try:
            self.state.fee = await resolve_action_fee(
                self.action,
                self.context(),
                rpc=self.rpc,
                chain=self.chain,
                bucket=self.bucket,
            )
            self.state.fee_error = None
        except FeeUnavailableError as e:
            logger.warning("Fee for %s unavailable: %s", self.action.id, e)
            self.state.fee = None
            self.state.fee_error = FEE_UNAVAILABLE

    def _populate_defaults(self) -> None:
        ctx = self.context()
        for f in flatten_fields(fields_for_action(self.action)):
            name = f.key
            if name is None:
                continue
            value = default_value(f, self.state.form.get(name), ctx, self._field_ds_value(f))
            if not is_empty(value):
                self.state.form[name] = value

    async def update_form(self, patch: Mapping[str, Any]) -> WorkflowRunState:
        """
        Merge edits; clears their errors and schedules a DS reload when a
        watched form value changed.
        """
        changed = {k for k, v in patch.items() if self.state.form.get(k) != v}
        self.state.form.update(patch)
        for k in patch:
            self.state.errors.pop(k, None)
        if changed & self._ds_watch:
            self._debouncer.trigger()
        return self.state

    def validate(self) -> Dict[str, str]:
        ctx = self.context()
        self.state.errors = validate_fields(self.current_fields(), self.state.form, ctx)
        return self.state.errors

    # ---------------------------
    # transitions
    # ---------------------------

    async def continue_(self) -> WorkflowRunState:
        if self.state.stage != Stage.FORM:
            raise InvalidStageTransition(f"continue is only valid from form, not {self.state.stage.value}")

        if self.validate():
            logger.info("Validation failed for %s: %s", self.action.id, sorted(self.state.errors))
            return self.state

        if self.action.is_wizard and self.state.step_index < len(self.action.steps) - 1:
            self.state.step_index += 1
            return self.state

        if has_confirmation(self.action):
            self.state.move_to(Stage.CONFIRM)
            return self.state

        return await self.execute()

    def back(self) -> WorkflowRunState:
        if self.state.stage == Stage.CONFIRM:
            self.state.move_to(Stage.FORM)
            return self.state
        if self.state.stage == Stage.FORM and self.action.is_wizard and self.state.step_index > 0:
            self.state.step_index -= 1
            return self.state
        raise InvalidStageTransition(f"nothing to go back to from {self.state.stage.value}")

    async def confirm(self) -> WorkflowRunState:
        if self.state.stage != Stage.CONFIRM:
            raise InvalidStageTransition(f"confirm is only valid from confirm, not {self.state.stage.value}")
        if self.validate():
            self.state.move_to(Stage.FORM)
            return self.state
        return await self.execute()

    def _submit_call(self, ctx: Mapping[str, Any]) -> RemoteCall:
        submit = self.action.submit
        if submit is None:
            raise InvalidStageTransition(f"action {self.action.id} declares no submit")

        host = host_or_empty(self.chain, submit.base)
        if not host and submit.base == "admin":
            host = host_or_empty(self.chain, "rpc")

        headers = dict(submit.headers) if submit.headers else {"Content-Type": "application/json"}
        payload = build_payload_from_action(self.action, ctx)
        return RemoteCall(
            url=host + evaluate(submit.path, ctx),
            method=submit.method,
            headers=headers,
            body=json.dumps(payload),
            tool_name=f"submit.{self.action.id}",
        )

    async def execute(self) -> WorkflowRunState:
        """
        Submit the action. Locked sessions suspend the run instead; it resumes
        exactly once when the session unlocks.
        """
        if self.state.stage not in (Stage.FORM, Stage.CONFIRM):
            raise InvalidStageTransition(f"cannot execute from {self.state.stage.value}")

        if requires_auth(self.action) and not self.session.is_unlocked():
            logger.info("Action %s waiting for session unlock", self.action.id)
            set_pending_resume(self.state)
            return self.state

        with bound_run_id(self.state.run_id, self.action.id):
            clear_pending_resume(self.state)
            form = normalize_form_for_action(self.action, self.state.form)
            ctx = self.context(form)
            self._notify("onBeforeSubmit")
            call = self._submit_call(ctx)
            self.state.move_to(Stage.EXECUTING)

            result = await self._send(call)
            self.state.result = result
            self.state.executions += 1

            result_ctx = result.model_dump()
            if result.ok:
                if self.action.success is not None:
                    result.message = evaluate(self.action.success, {**ctx, "result": result_ctx}) \
                        if isinstance(self.action.success, str) else self.action.success
                self._notify("onSuccess", result_ctx)
            else:
                self._notify("onError", result_ctx)
            self._notify("onFinally", result_ctx)

            self.state.move_to(Stage.RESULT)
            logger.info("Action %s finished ok=%s", self.action.id, result.ok)
        return self.state

    async def _send(self, call: RemoteCall) -> ExecutionResult:
        try:
            res = await self.rpc.send(call, raise_for_status=False)
        except RPCError as e:
            logger.warning("Submit for %s never reached the endpoint: %s", self.action.id, e)
            return ExecutionResult(
                ok=True,
                placeholder=True,
                tx_hash=self.settings.execution_placeholder_hash,
                error=str(e),
            )

        body = _response_body(res.text)
        ok = is_success(res.status_code, body)
        error = None
        if not ok:
            error = body.get("error") if isinstance(body, Mapping) and body.get("error") else f"HTTP {res.status_code}"
        return ExecutionResult(
            ok=ok,
            status=res.status_code,
            response=body,
            tx_hash=_tx_hash(body) if ok else None,
            error=str(error) if error is not None else None,
        )

    def done(self) -> WorkflowRunState:
        """
        Finish the workflow: the run's accumulated state is discarded and a
        fresh form starts under the same run id. Loaded data and the fee are kept.
        """
        self.state.move_to(Stage.FORM)
        self.state = WorkflowRunState(
            run_id=self.state.run_id,
            action_id=self.action.id,
            ds=self.state.ds,
            fee=self.state.fee,
            fee_error=self.state.fee_error,
        )
        self._populate_defaults()
        logger.info("Run %s reset for %s", self.state.run_id, self.action.id)
        return self.state

    # ---------------------------
    # session resume
    # ---------------------------

    def _on_session_change(self, store: SessionStore) -> None:
        if not self.state.pending_resume or not store.is_unlocked():
            return
        if self._resume_task is not None and not self._resume_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop in this thread; resume_pending() picks it up
            return
        self._resume_task = loop.create_task(self.resume_pending())

    async def resume_pending(self) -> bool:
        """
        Run a suspended execution if the session is now unlocked. Returns whether it ran.

        The form may have changed while suspended, so it is validated again;
        errors drop the pending execution and leave the run in form.
        """
        if not self.state.pending_resume or not self.session.is_unlocked():
            return False

        ctx = self.context()
        errors = validate_fields(visible_fields(fields_for_action(self.action), ctx), self.state.form, ctx)
        if errors:
            logger.info("Dropping resume of %s, form no longer valid: %s", self.action.id, sorted(errors))
            clear_pending_resume(self.state)
            self.state.errors = errors
            if self.state.stage == Stage.CONFIRM:
                self.state.move_to(Stage.FORM)
            return False

        logger.info("Resuming %s after unlock", self.action.id)
        await self.execute()
        return True

    async def drain(self) -> WorkflowRunState:
        """
        Settle background work: pending DS reloads and resume tasks.
        """
        await self._debouncer.flush()
        if self._resume_task is not None:
            task, self._resume_task = self._resume_task, None
            await task
        await self.resume_pending()
        return self.state

    def close(self) -> None:
        self._debouncer.cancel()
        self._unsubscribe()

    # ---------------------------
    # view
    # ---------------------------

    def view(self) -> Dict[str, Any]:
        ctx = self.context()
        fields = []
        for f in self.current_fields():
            props = FieldProps(
                field=f,
                value=self.state.form.get(f.key) if f.key else None,
                error=self.state.errors.get(f.key) if f.key else None,
                template_context=ctx,
                ds_value=self._field_ds_value(f),
            )
            fields.append(render_field(props).to_dict())

        return {
            "runId": self.state.run_id,
            "actionId": self.action.id,
            "stage": self.state.stage.value,
            "stepIndex": self.state.step_index,
            "form": dict(self.state.form),
            "errors": dict(self.state.errors),
            "fields": fields,
            "summary": build_confirm_summary(self.action, ctx) if self.state.stage == Stage.CONFIRM else [],
            "fee": self.state.fee.model_dump() if self.state.fee is not None else None,
            "feeError": self.state.fee_error,
            "result": self.state.result.model_dump() if self.state.result is not None else None,
            "unlockRequested": self.state.unlock_requested,
            "executions": self.state.executions,
            "notifications": list(self.state.notifications),
        }
