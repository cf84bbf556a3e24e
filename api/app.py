"""
HTTP surface for the anonymous voting service.

The voter identity is taken from a header set by the upstream session layer;
this app trusts it and never echoes or logs it.
"""

import asyncio
import logging
import threading
from typing import Optional

from flask import Flask, jsonify, request

from config.config import ApiConfig
from zk.errors import InputValidationError, VerificationFailedError, ZKError

logger = logging.getLogger(__name__)


class LoopThread:
    """One long-lived event loop that request handlers submit coroutines to"""

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name="vote-loop", daemon=True)
        self._thread.start()

    def _run(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def run(self, coro, timeout: Optional[float] = None):
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(timeout)

    def stop(self):
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5)


def _error_response(error: ZKError):
    vote_error = error.to_vote_error()
    return jsonify({"success": False, "error": vote_error.to_dict()}), vote_error.http_status


def create_app(system, api_config: Optional[ApiConfig] = None,
               loop_thread: Optional[LoopThread] = None) -> Flask:
    api_config = api_config or ApiConfig()
    loop_thread = loop_thread or LoopThread()

    app = Flask(__name__)
    app.config["VOTING_SYSTEM"] = system
    app.config["LOOP_THREAD"] = loop_thread

    def json_body():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise InputValidationError("Request body must be a JSON object")
        return data

    @app.route("/health", methods=["GET"])
    def health():
        status = system.setup_status()
        return jsonify({
            "status": "healthy" if status["ready"] else "degraded",
            "artifactsReady": status["ready"],
        }), 200

    @app.route("/zkp/cast", methods=["POST"])
    def cast_vote():
        voter_id = request.headers.get(api_config.voter_header)
        if not voter_id:
            return jsonify({"success": False, "error": {
                "kind": "unauthenticated", "message": "Authentication required"}}), 401

        try:
            data = json_body()
            for name in ("candidateId", "electionId"):
                if data.get(name) in (None, ""):
                    raise InputValidationError(f"Missing required field: {name}")
        except ZKError as e:
            return _error_response(e)

        result = loop_thread.run(system.cast_vote(voter_id, data["candidateId"], data["electionId"]))
        body, status = result.to_response()
        return jsonify(body), status

    @app.route("/zkp/verify", methods=["POST"])
    def verify_vote():
        try:
            data = json_body()
            outcome = loop_thread.run(system.verify_vote(
                data.get("proof"), data.get("publicSignals"), data.get("electionId")))
        except ZKError as e:
            return _error_response(e)

        if not outcome["valid"]:
            vote_error = VerificationFailedError(outcome["error"]).to_vote_error()
            return jsonify({"success": False, "valid": False,
                            "error": vote_error.to_dict()}), vote_error.http_status
        return jsonify({"success": True, **outcome}), 200

    @app.route("/zkp/stats/<election_id>", methods=["GET"])
    def election_stats(election_id):
        reverify = request.args.get("reverify", "").lower() in ("1", "true", "yes")
        try:
            stats = loop_thread.run(system.election_stats(election_id, reverify=reverify))
        except ZKError as e:
            return _error_response(e)
        return jsonify({"success": True, "stats": stats}), 200

    return app
