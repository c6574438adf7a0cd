"""HTTP proxy that relays explanation prompts to the Gemini API."""

import logging

import requests
from flask import Flask, jsonify, request

from core.config import EngineConfig, configure_logging

logger = logging.getLogger(__name__)

TEMPERATURE = 0.3
MAX_OUTPUT_TOKENS = 800


def upstream_payload(prompt):
    return {
        "contents": [{"parts": [{"text": prompt}]}],
        "generationConfig": {
            "temperature": TEMPERATURE,
            "maxOutputTokens": MAX_OUTPUT_TOKENS,
        },
    }


def create_app(config=None, session=None):
    """Build the Flask app.

    ``session`` is the object used for the upstream POST, by default the
    :mod:`requests` module itself.
    """
    config = config or EngineConfig()
    http = session or requests
    app = Flask(__name__)

    @app.route("/api/gemini", methods=["POST"])
    def gemini():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            data = {}
        api_key = data.get("apiKey")
        model = data.get("model")
        prompt = data.get("prompt")
        if not api_key or not prompt or not isinstance(model, str) or not model:
            return jsonify({"error": "Missing required parameters"}), 400

        clean_model = model.replace("models/", "")
        url = f"{config.upstream_base_url}/{clean_model}:generateContent"
        try:
            response = http.post(
                url,
                params={"key": api_key},
                json=upstream_payload(prompt),
                timeout=config.upstream_timeout_s,
            )
        except requests.RequestException:
            logger.exception("Gemini request failed")
            return jsonify({"error": "Internal server error"}), 500

        if not response.ok:
            logger.error("Gemini API error: %s %s", response.status_code, response.text)
            return jsonify({"error": response.text}), response.status_code

        try:
            return jsonify(response.json())
        except ValueError:
            logger.exception("Gemini returned a non JSON body")
            return jsonify({"error": "Internal server error"}), 500

    return app


if __name__ == "__main__":
    configure_logging()
    create_app().run(port=3000)
