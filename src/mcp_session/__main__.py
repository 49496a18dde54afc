from mcp_session.server.app import run

if __name__ == "__main__":
    run()
