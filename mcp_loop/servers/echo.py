"""
Echo tool server: minimal reference implementation.

Use this as a template for building new tool servers. It implements a
single tool that echoes back its input, useful for testing the transport
layer.

Launch:
    python -m mcp_loop.servers.echo

Test:
    echo '{"jsonrpc":"2.0","method":"tools/call","params":{"name":"echo","arguments":{"msg":"hi"}},"id":1}' \
        | python -m mcp_loop.servers.echo
"""

from mcp_loop.server import StdioToolServer, ToolHandler


class EchoTool(ToolHandler):
    name = "echo"
    description = "Echoes back the input message. Useful for testing."
    parameters = {
        "msg": {
            "type": "string",
            "description": "The message to echo back",
        },
    }
    required = ["msg"]

    def handle(self, params: dict) -> str:
        return params.get("msg", "")


def main() -> None:
    server = StdioToolServer("echo")
    server.register(EchoTool())
    server.run()


if __name__ == "__main__":
    main()
