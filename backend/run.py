from app import create_app, socketio

app = create_app()

if __name__ == '__main__':
    # Deadline-driven finalization runs beside the web server
    app.extensions['session_scheduler'].start()
    # Use SocketIO server to enable websockets in dev
    socketio.run(app, debug=True, use_reloader=False)
