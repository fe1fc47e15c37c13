"""Entry point for the compound-kb MCP server."""

from compound_kb.server import create_server


def main() -> None:
    """Run the compound-kb MCP server."""
    server = create_server()
    server.run(transport="stdio")


if __name__ == "__main__":
    main()
