"""
Policy Oracle Client

Blocking HTTP client for the external learning policy. Every call has a
timeout; failures never propagate. Action selection falls back to a
uniformly random action, the other calls report False.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import numpy as np
import requests

from .config import OracleConfig
from .rewards import Experience

logger = logging.getLogger(__name__)

# Transport failures plus malformed response bodies
_ACTION_ERRORS = (requests.RequestException, ValueError, KeyError, TypeError)


@dataclass(frozen=True)
class ActionResponse:
    """Action chosen by the policy with its auxiliary outputs."""

    action: int
    log_prob: float = 0.0
    value: float = 0.0
    fallback: bool = False


def _parse_action(data: Any) -> ActionResponse:
    if not isinstance(data, dict):
        raise TypeError(f"expected JSON object, got {type(data).__name__}")
    log_prob = data.get("log_prob", data.get("logProbability", 0.0))
    value = data.get("value", data.get("valueEstimate", 0.0))
    return ActionResponse(
        action=int(data["action"]),
        log_prob=float(log_prob if log_prob is not None else 0.0),
        value=float(value if value is not None else 0.0),
    )


class OracleClient:
    """
    HTTP client for the policy server.

    Endpoints (POST unless noted):
        /select_action, /select_action_local
        /store_experience, /store_experience_local
        /start_episode, /end_episode, /log_episode_metrics
        /load_model, /trigger_train
        /health (GET)
    """

    def __init__(
        self,
        config: Optional[OracleConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config or OracleConfig()
        self.base_url = self.config.base_url.rstrip("/")
        self.agent_id = self.config.agent_id
        self.timeout = self.config.timeout_s
        self._rng = np.random.default_rng(self.config.seed)
        self._session = session or requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})
        self.fallback_count = 0
        logger.info("Oracle client %s using %s", self.agent_id, self.base_url)

    @property
    def broker_id(self) -> str:
        """Agent id as the server knows local brokers (without the local_ prefix)."""
        if self.agent_id.startswith("local_"):
            return self.agent_id[len("local_"):]
        return self.agent_id

    def _post(self, endpoint: str, payload: Any = None) -> requests.Response:
        response = self._session.post(
            f"{self.base_url}{endpoint}",
            json=payload,
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response

    def _fallback(self, endpoint: str, action_space: int, error: Exception) -> ActionResponse:
        self.fallback_count += 1
        if action_space <= 0:
            logger.error("Oracle %s failed and action space is empty: %s", endpoint, error)
            return ActionResponse(action=-1, fallback=True)
        action = int(self._rng.integers(action_space))
        logger.warning(
            "Oracle %s unavailable (%s), degraded mode: random action %d of %d",
            endpoint,
            error,
            action,
            action_space,
        )
        return ActionResponse(action=action, fallback=True)

    # --- Decisions ----------------------------------------------------

    def select_action(self, state: Sequence[float], action_space: int) -> ActionResponse:
        """Ask the global policy for a site index."""
        try:
            response = self._post("/select_action", [float(x) for x in state])
            return _parse_action(response.json())
        except _ACTION_ERRORS as e:
            return self._fallback("/select_action", action_space, e)

    def select_action_local(
        self, state: Sequence[float], action_space: int, broker_id: Optional[str] = None
    ) -> ActionResponse:
        """Ask a local policy for a resource index."""
        payload = {
            "broker_id": broker_id or self.agent_id,
            "state": [float(x) for x in state],
        }
        try:
            response = self._post("/select_action_local", payload)
            return _parse_action(response.json())
        except _ACTION_ERRORS as e:
            return self._fallback("/select_action_local", action_space, e)

    # --- Experience ---------------------------------------------------

    def store_experience(self, experience: Experience) -> bool:
        payload = experience.to_payload()
        logger.debug("store_experience payload: %s", payload)
        try:
            self._post("/store_experience", payload)
            return True
        except requests.RequestException as e:
            logger.error("Failed to store experience for task %s: %s", experience.task_id, e)
            return False

    def store_experience_local(self, experience: Experience, broker_id: Optional[str] = None) -> bool:
        payload = experience.to_payload()
        target = broker_id or self.broker_id
        if target.startswith("local_"):
            target = target[len("local_"):]
        payload["broker_id"] = target
        try:
            self._post("/store_experience_local", payload)
            return True
        except requests.RequestException as e:
            logger.error("Failed to store local experience for task %s: %s", experience.task_id, e)
            return False

    # --- Lifecycle ----------------------------------------------------

    def _signal(self, endpoint: str, payload: Any = None) -> bool:
        try:
            self._post(endpoint, payload)
            return True
        except requests.RequestException as e:
            logger.error("Oracle %s failed: %s", endpoint, e)
            return False

    def start_episode(self) -> bool:
        return self._signal("/start_episode")

    def end_episode(self) -> bool:
        return self._signal("/end_episode")

    def trigger_train(self) -> bool:
        ok = self._signal("/trigger_train")
        if ok:
            logger.info("Training triggered")
        return ok

    def load_model(self) -> bool:
        ok = self._signal("/load_model", {"agent_id": self.agent_id})
        if ok:
            logger.info("Model loaded for agent %s", self.agent_id)
        return ok

    def log_episode_metrics(self, episode: int, metrics: Dict[str, float]) -> bool:
        payload: Dict[str, Any] = {"episode": int(episode)}
        payload.update({key: float(value) for key, value in metrics.items()})
        ok = self._signal("/log_episode_metrics", payload)
        if ok:
            logger.info("Episode %d metrics sent", episode)
        return ok

    def check_connection(self) -> bool:
        """True if GET /health answers with a 2xx status."""
        try:
            response = self._session.get(f"{self.base_url}/health", timeout=self.timeout)
            response.raise_for_status()
            return True
        except requests.RequestException as e:
            logger.warning("Oracle health check failed at %s: %s", self.base_url, e)
            return False

    def close(self) -> None:
        self._session.close()
