import os
import webbrowser
from threading import Timer

from mnprofile.app import create_app
from mnprofile.config_manager import load_settings

HOST = os.environ.get('HOST', '127.0.0.1')
PORT = int(os.environ.get('PORT', '5000'))


def open_browser():
    """Opens the browser after a 1.5s delay to allow the server to start."""
    webbrowser.open_new(f"http://{HOST}:{PORT}")


if __name__ == '__main__':
    print('Starting Music Nerd Profile...')
    app = create_app(load_settings())

    # 1. Schedule the browser to open in 1.5 seconds
    Timer(1.5, open_browser).start()

    # 2. Start the server (This blocks execution until you press Ctrl+C)
    app.run(host=HOST, port=PORT, debug=True)
