"""Entry point for running the Flask development server."""

from dotenv import load_dotenv

load_dotenv()

from gigboard import create_app  # noqa: E402


app = create_app()


if __name__ == "__main__":
    app.run(debug=True)
