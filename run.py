from moku_explore import create_app

app = create_app()

if __name__ == '__main__':
    host = app.config.get('HOST', '127.0.0.1')
    port = app.config.get('PORT', 5000)
    debug = app.config.get('DEBUG', False)

    # The reloader would start a second explore loop in the child process
    app.run(host=host, port=port, debug=debug, use_reloader=False)
