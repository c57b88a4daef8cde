"""WSGI entrypoint: ``gunicorn app:app`` or ``python app.py`` for local runs."""
import os

from unitix import create_app

app = create_app()


if __name__ == "__main__":
    # Production: run behind a WSGI server (gunicorn/uwsgi) with real JWT secrets set
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "5000"))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host=host, port=port, debug=debug)
