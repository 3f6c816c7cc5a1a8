from quiz_arena import create_app, start_server

app = create_app()

if __name__ == '__main__':
    # Use SocketIO server to enable websockets in dev
    start_server(app, debug=True)
