#!/usr/bin/env python3
"""
Ingress D-Operator Service
Handles Ingress events delivered by shell-operator and keeps the shared
Gateway and ReferenceGrants in sync with them
"""

import os
import sys
import json
import time
import signal
import logging
from typing import Any, Dict, List, Optional

from kubernetes import client
from prometheus_client import start_http_server

from .config import KubeClients, OperatorConfig, setup_logging
from .errors import ConflictError
from .reconcile_cache import ReconcileCache
from .reconciler import IngressReconciler
from .translator import Translator

logger = logging.getLogger(__name__)

# Global flag for graceful shutdown
shutdown_requested = False

MAX_CONFLICT_RETRIES = 3


def signal_handler(signum, frame):
    """Handle shutdown signals"""
    global shutdown_requested
    logger.info(f"[shutdown] Received signal {signum}, initiating graceful shutdown...")
    shutdown_requested = True


class _JsonResponse:
    """Adapter letting ApiClient.deserialize turn watch payloads into typed models"""

    def __init__(self, obj):
        self.data = json.dumps(obj)


class IngressOperatorService:
    """Main service for processing Ingress events"""

    def __init__(self, cfg: OperatorConfig, clients: Optional[KubeClients] = None):
        self.cfg = cfg
        self.clients = clients or KubeClients.create()
        self.api_client = client.ApiClient()
        self.translator = Translator.from_config(cfg)
        self.cache = ReconcileCache(
            self.clients.core_v1,
            cfg.reconcile_cache_namespace,
            cfg.reconcile_cache_base_name,
            cfg.reconcile_cache_shards,
        )
        self.reconciler = IngressReconciler(
            self.clients.networking_v1,
            self.clients.custom_api,
            self.translator,
            cache=self.cache,
            ingress_class_filter=cfg.ingress_class_filter,
        )

        logger.info(
            f"Ingress D-Operator service initialized "
            f"(gateway={cfg.gateway_namespace}/{cfg.gateway_name}, class={cfg.gateway_class_name})")

    def to_ingress(self, obj: Dict[str, Any]):
        return self.api_client.deserialize(_JsonResponse(obj), 'V1Ingress')

    def process_request(self, binding_context: str) -> None:
        """Process one shell-operator binding context"""
        context_data = json.loads(binding_context)
        if not context_data:
            raise ValueError("Empty binding context")

        try:
            for binding in context_data:
                self._process_binding(binding)
        finally:
            # Whatever was reconciled before a failure stays recorded
            self.cache.save()

    def _process_binding(self, binding: Dict[str, Any]) -> None:
        binding_type = binding.get('type')
        watch_event = binding.get('watchEvent')

        objects: List[Dict[str, Any]] = []
        if 'object' in binding:
            objects = [binding['object']]
        elif 'objects' in binding:
            objects = [wrapper.get('object', {}) for wrapper in binding['objects']]

        if not objects:
            logger.warning(f"No objects in binding context of type {binding_type}")
            return

        for obj in objects:
            if obj.get('kind', 'Ingress') != 'Ingress':
                logger.warning(f"Unknown kind: {obj.get('kind')}")
                continue
            ingress = self.to_ingress(obj)
            if binding_type == 'Event' and watch_event == 'Deleted':
                self._with_conflict_retry(self.reconciler.remove, ingress)
            else:
                self._with_conflict_retry(self.reconciler.reconcile, ingress)

    def _with_conflict_retry(self, func, ingress):
        """Re-run the whole pass when a shared object changed underneath us"""
        for attempt in range(1, MAX_CONFLICT_RETRIES + 1):
            try:
                return func(ingress)
            except ConflictError as e:
                if attempt == MAX_CONFLICT_RETRIES:
                    raise
                logger.info(
                    f"Conflict while processing Ingress {ingress.metadata.namespace}/{ingress.metadata.name}, "
                    f"retrying ({attempt}/{MAX_CONFLICT_RETRIES}): {e}")


def watch_requests(service: IngressOperatorService, shared_dir='/shared'):
    """Watch for request files and process them"""
    logger.info(f"Ingress D-Operator service watching {shared_dir}")

    processed = set()

    while not shutdown_requested:
        try:
            if not os.path.exists(shared_dir):
                logger.warning(f"Shared directory {shared_dir} does not exist, waiting...")
                time.sleep(1)
                continue

            files = os.listdir(shared_dir)
            request_files = [f for f in files if f.startswith('request-') and f.endswith('.json')]

            for req_file in request_files:
                if shutdown_requested:
                    logger.info("[shutdown] Stopping request processing...")
                    break

                if req_file in processed:
                    continue

                req_path = os.path.join(shared_dir, req_file)
                request_id = req_file.replace('request-', '').replace('.json', '')
                resp_path = os.path.join(shared_dir, f'response-{request_id}.txt')

                with open(req_path, 'r') as f:
                    binding_context = f.read()

                logger.info(f"[handler] Processing request from {req_file}")

                try:
                    service.process_request(binding_context)
                    response = "OK"
                    logger.info("[handler] Successfully processed request")
                except Exception as e:
                    response = f"ERROR: {e}"
                    logger.error(f"ERROR processing request: {e}", exc_info=True)

                with open(resp_path, 'w') as f:
                    f.write(response)

                logger.info(f"[handler] Wrote response to {os.path.basename(resp_path)}")
                processed.add(req_file)

            # Forget request files that shell-operator already cleaned up
            for filename in list(processed):
                if not os.path.exists(os.path.join(shared_dir, filename)):
                    processed.discard(filename)

            time.sleep(0.1)

        except KeyboardInterrupt:
            logger.info("[shutdown] Keyboard interrupt received")
            break
        except OSError as e:
            logger.error(f"ERROR in watch loop: {e}")
            time.sleep(1)

    logger.info("[shutdown] Service stopped cleanly")


def main() -> int:
    setup_logging(int(os.getenv('VERBOSITY', '0')))

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    cfg = OperatorConfig.from_env()
    start_http_server(cfg.metrics_port)

    try:
        service = IngressOperatorService(cfg)
        watch_requests(service, cfg.shared_dir)
    except Exception as e:
        logger.critical(f"FATAL ERROR: {e}", exc_info=True)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
