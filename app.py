import os
from results_app import create_app

app = create_app()

if __name__ == "__main__":
    # Dev server only; HOST/PORT let several checkouts run side by side
    host = os.environ.get("HOST", "127.0.0.1")
    try:
        port = int(os.environ.get("PORT", "5000"))
    except ValueError:
        port = 5000
    debug = os.environ.get("FLASK_DEBUG", "1").lower() in ("1", "true", "yes")
    app.logger.info("Starting results portal on %s:%s (debug=%s)", host, port, debug)
    app.run(host=host, port=port, debug=debug)
