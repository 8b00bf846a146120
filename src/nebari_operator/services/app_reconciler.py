"""
NebariApp reconciler - the orchestrator of all reconcile phases.

Every pass re-derives the full state of a NebariApp from its spec and the
cluster: the finalizer is ensured, then validation, routing and auth run in
that order, stopping at the first failing phase, and the status is written
once at the end. Deletion runs cleanup and only then releases the finalizer.
"""

import asyncio
import time
from dataclasses import dataclass

import pydantic
from kubernetes.client.rest import ApiException

from .. import constants
from ..errors import (
    CleanupError,
    ConfigurationError,
    KubernetesAPIError,
    OperatorError,
    ValidationError,
)
from ..models.nebariapp import NebariApp
from ..observability.metrics import metrics_collector
from ..utils import events, validation
from ..utils.kubernetes import NEBARIAPP, call_api, is_not_found, wrap_api_exception
from .auth_reconciler import AuthReconciler
from .base_reconciler import BaseReconciler
from .providers import OIDCProvider
from .routing_reconciler import RoutingReconciler

RESOURCE_TYPE = "nebariapp"


@dataclass
class ReconcileResult:
    """Outcome of one reconcile pass.

    ``requeue_after`` is None when the object needs no further passes (it is
    gone or fully deleted). ``error`` is set when a phase failed.
    """

    requeue_after: float | None = None
    error: OperatorError | None = None
    failed_phase: str | None = None


class NebariAppReconciler(BaseReconciler):
    """Drives a NebariApp through validation, routing, auth and cleanup."""

    def __init__(
        self,
        providers: dict[str, OIDCProvider],
        routing: RoutingReconciler | None = None,
        auth: AuthReconciler | None = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.providers = providers
        self.routing = routing or RoutingReconciler(
            k8s_client=self.k8s_client, settings=self.settings
        )
        self.auth = auth or AuthReconciler(
            providers, k8s_client=self.k8s_client, settings=self.settings
        )

    async def reconcile(self, name: str, namespace: str) -> ReconcileResult:
        """
        Reconcile the NebariApp ``namespace/name``.

        Safe to call any number of times; the result carries the delay after
        which the caller should call again.
        """
        start_time = time.time()
        self.logger.log_reconciliation_start(RESOURCE_TYPE, name, namespace)

        async with metrics_collector.track_reconciliation(namespace) as tracker:
            try:
                async with asyncio.timeout(self.settings.reconcile_timeout_seconds):
                    result = await self._reconcile(name, namespace)
            except TimeoutError:
                result = ReconcileResult(
                    requeue_after=self.settings.requeue_transient_error_seconds,
                    error=OperatorError(
                        f"reconcile did not finish within "
                        f"{self.settings.reconcile_timeout_seconds}s",
                        category="timeout",
                        retryable=True,
                    ),
                )
            tracker.error = result.error

        duration = time.time() - start_time
        if result.error is not None:
            self.logger.log_reconciliation_error(
                RESOURCE_TYPE,
                name,
                namespace,
                result.error,
                duration,
                phase=result.failed_phase,
            )
        else:
            self.logger.log_reconciliation_success(
                RESOURCE_TYPE, name, namespace, duration
            )
        return result

    async def _reconcile(self, name: str, namespace: str) -> ReconcileResult:
        body = await self.get_custom_object(NEBARIAPP, namespace, name)
        if body is None:
            self.logger.info(
                f"NebariApp {namespace}/{name} not found, ignoring since it must be deleted"
            )
            metrics_collector.forget_resource(namespace, name)
            return ReconcileResult()

        try:
            app = NebariApp.model_validate(body)
        except pydantic.ValidationError as e:
            partial = NebariApp.from_unvalidated(body)
            if partial.being_deleted:
                self.logger.warning(
                    f"NebariApp {namespace}/{name} has an invalid spec, "
                    f"cleaning up from derived names"
                )
                return await self._reconcile_deletion(partial)
            return await self._invalid_spec(partial, e)

        if app.being_deleted:
            return await self._reconcile_deletion(app)

        try:
            await self.ensure_finalizer(app)
        except KubernetesAPIError as e:
            return ReconcileResult(requeue_after=self.delay_for(e), error=e)

        app.status.hostname = app.spec.hostname
        self.set_condition(
            app,
            constants.CONDITION_READY,
            constants.CONDITION_UNKNOWN,
            constants.REASON_RECONCILING,
            "Reconciliation in progress",
        )

        try:
            await self.validate(app)
        except OperatorError as e:
            return await self._phase_failed(app, "validation", e)

        if app.spec.routing is None:
            self.set_condition(
                app,
                constants.CONDITION_ROUTING_READY,
                constants.CONDITION_FALSE,
                constants.REASON_ROUTING_NOT_CONFIGURED,
                "Routing configuration not provided in spec",
            )
            app.status.gateway_ref = None
            self.logger.info(
                f"Routing not configured for {namespace}/{name}, skipping HTTPRoute"
            )
            try:
                await self.routing.cleanup_httproute(app)
            except KubernetesAPIError as e:
                return await self._phase_failed(
                    app, "routing", e, f"Routing reconciliation failed: {e.message}"
                )
            if app.spec.auth_enabled:
                try:
                    await self.auth.reject_without_routing(app)
                except OperatorError as e:
                    return await self._phase_failed(
                        app, "auth", e, f"Auth reconciliation failed: {e.message}"
                    )
        else:
            try:
                app.status.gateway_ref = await self.routing.reconcile_routing(app)
            except OperatorError as e:
                return await self._phase_failed(
                    app, "routing", e, f"Routing reconciliation failed: {e.message}"
                )

        try:
            app.status.client_secret_ref = await self.auth.reconcile_auth(app)
        except OperatorError as e:
            return await self._phase_failed(
                app, "auth", e, f"Auth reconciliation failed: {e.message}"
            )

        self.set_condition(
            app,
            constants.CONDITION_READY,
            constants.CONDITION_TRUE,
            constants.REASON_RECONCILE_SUCCESS,
            "NebariApp reconciled successfully",
        )
        app.status.observed_generation = app.generation

        try:
            await self.write_status(app)
        except KubernetesAPIError as e:
            return ReconcileResult(requeue_after=self.delay_for(e), error=e)

        metrics_collector.record_phase_result(namespace, name, None)
        return ReconcileResult(requeue_after=self.settings.requeue_interval_seconds)

    async def validate(self, app: NebariApp) -> None:
        """
        Check namespace opt-in and the backend service.

        Raises:
            ValidationError: A check failed; Ready is set False with its reason
            KubernetesAPIError: The API could not be queried
        """
        try:
            await validation.validate_namespace_opt_in(self.core_api, app.namespace)
            await validation.validate_service(
                self.core_api,
                app.namespace,
                app.spec.service.name,
                app.spec.service.port,
            )
        except ValidationError as e:
            events.warning(app.reference_body(), e.reason, e.message)
            self.set_condition(
                app, constants.CONDITION_READY, constants.CONDITION_FALSE, e.reason, e.message
            )
            raise

        self.logger.info(f"Validation passed for {app.namespace}/{app.name}")
        events.normal(
            app.reference_body(),
            constants.EVENT_REASON_VALIDATION_SUCCESS,
            "NebariApp validation completed successfully",
        )
        # Later phases may still turn Ready False
        self.set_condition(
            app,
            constants.CONDITION_READY,
            constants.CONDITION_TRUE,
            constants.REASON_RECONCILE_SUCCESS,
            "NebariApp validation completed successfully",
        )

    async def cleanup(self, app: NebariApp) -> None:
        """
        Tear down what owner references cannot: the HTTPRoute, synchronously,
        and any OIDC client provisioned in an identity provider.

        Raises:
            CleanupError: Any step failed; the finalizer must stay
        """
        self.logger.info(f"Cleaning up resources for {app.namespace}/{app.name}")
        events.normal(
            app.reference_body(), constants.EVENT_REASON_CLEANUP, "Starting resource cleanup"
        )
        try:
            await self.routing.cleanup_httproute(app)
            await self.auth.cleanup_auth(app)
        except OperatorError as e:
            metrics_collector.record_cleanup(app.namespace, success=False)
            raise CleanupError(f"cleanup failed: {e.message}", cause=e) from e

        metrics_collector.record_cleanup(app.namespace, success=True)
        self.logger.info(f"Cleanup completed for {app.namespace}/{app.name}")

    async def ensure_finalizer(self, app: NebariApp) -> None:
        if constants.NEBARIAPP_FINALIZER in app.finalizers:
            return
        finalizers = [*app.finalizers, constants.NEBARIAPP_FINALIZER]
        await self._patch_finalizers(app, finalizers)
        app.metadata["finalizers"] = finalizers
        self.logger.debug(f"Added finalizer to {app.namespace}/{app.name}")

    async def remove_finalizer(self, app: NebariApp) -> None:
        if constants.NEBARIAPP_FINALIZER not in app.finalizers:
            return
        finalizers = [f for f in app.finalizers if f != constants.NEBARIAPP_FINALIZER]
        await self._patch_finalizers(app, finalizers)
        app.metadata["finalizers"] = finalizers
        self.logger.debug(f"Removed finalizer from {app.namespace}/{app.name}")

    async def write_status(self, app: NebariApp) -> None:
        """Persist the in-memory status through the status subresource."""
        try:
            await call_api(
                self.custom_api.patch_namespaced_custom_object_status,
                namespace=app.namespace,
                name=app.name,
                body={"status": app.status.to_patch()},
                **NEBARIAPP.coordinates(),
            )
        except ApiException as e:
            if is_not_found(e):
                self.logger.debug(f"NebariApp {app.namespace}/{app.name} gone, status dropped")
                return
            raise wrap_api_exception(
                f"Failed to update status of NebariApp {app.name}", e
            ) from e

    def delay_for(self, error: OperatorError) -> float:
        """Long delay for errors needing a human, short for the rest."""
        if error.retryable:
            return self.settings.requeue_transient_error_seconds
        return self.settings.requeue_config_error_seconds

    async def _reconcile_deletion(self, app: NebariApp) -> ReconcileResult:
        if constants.NEBARIAPP_FINALIZER not in app.finalizers:
            return ReconcileResult()

        try:
            await self.cleanup(app)
            await self.remove_finalizer(app)
        except OperatorError as e:
            error = e if isinstance(e, CleanupError) else CleanupError(e.message, cause=e)
            return ReconcileResult(
                requeue_after=self.settings.requeue_transient_error_seconds,
                error=error,
                failed_phase="cleanup",
            )

        metrics_collector.forget_resource(app.namespace, app.name)
        return ReconcileResult()

    async def _invalid_spec(
        self, app: NebariApp, error: pydantic.ValidationError
    ) -> ReconcileResult:
        details = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}"
            for err in error.errors()
        )
        config_error = ConfigurationError(
            f"invalid NebariApp spec: {details}",
            user_action="Fix the NebariApp spec",
        )
        events.warning(app.reference_body(), constants.REASON_INVALID_SPEC, config_error.message)
        return await self._phase_failed(
            app,
            "validation",
            config_error,
            config_error.message,
            reason=constants.REASON_INVALID_SPEC,
        )

    async def _phase_failed(
        self,
        app: NebariApp,
        phase: str,
        error: OperatorError,
        ready_message: str | None = None,
        reason: str = constants.REASON_FAILED,
    ) -> ReconcileResult:
        if ready_message is not None:
            self.set_condition(
                app,
                constants.CONDITION_READY,
                constants.CONDITION_FALSE,
                reason,
                ready_message,
            )
        elif not isinstance(error, ValidationError):
            self.set_condition(
                app,
                constants.CONDITION_READY,
                constants.CONDITION_FALSE,
                constants.REASON_FAILED,
                error.message,
            )

        metrics_collector.record_phase_result(app.namespace, app.name, phase)
        try:
            await self.write_status(app)
        except KubernetesAPIError as e:
            self.logger.warning(f"Could not persist status after {phase} failure: {e.message}")

        return ReconcileResult(
            requeue_after=self.delay_for(error), error=error, failed_phase=phase
        )

    async def _patch_finalizers(self, app: NebariApp, finalizers: list[str]) -> None:
        try:
            await call_api(
                self.custom_api.patch_namespaced_custom_object,
                namespace=app.namespace,
                name=app.name,
                body={"metadata": {"finalizers": finalizers}},
                **NEBARIAPP.coordinates(),
            )
        except ApiException as e:
            raise wrap_api_exception(
                f"Failed to update finalizers of NebariApp {app.name}", e
            ) from e
