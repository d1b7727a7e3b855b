# vote_server/__main__.py

from vote_server import create_app

if __name__ == "__main__":
    app = create_app()
    app.run(host="0.0.0.0", port=app.config['PORT'])
