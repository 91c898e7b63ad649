import os

from flask import Flask, jsonify, request
from flask_cors import CORS

import scraper

CORS_ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]

app = Flask(__name__)
CORS(
    app,
    resources={r"/*": {"origins": "*"}},
    send_wildcard=True,
    allow_headers=CORS_ALLOW_HEADERS,
)


@app.route("/", methods=["GET", "POST", "OPTIONS"])
@app.route("/fetch-amazon-product", methods=["GET", "POST", "OPTIONS"])
def run():
    if request.method == "OPTIONS":
        return "", 204

    # ---- POST JSON BODY ----
    if request.method == "POST":
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            data = {}
        url = data.get("url") or data.get("URL")
    # ---- GET QUERY PARAM ----
    else:
        url = request.args.get("url")

    result = scraper.fetch_amazon_product(url or "")
    return jsonify(result.to_response()), 200


@app.route("/healthz", methods=["GET"])
def healthz():
    return jsonify({"status": "ok"}), 200


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port)
