"""Register an MCP provider and stream one chat turn over the HTTP API."""
import argparse
import asyncio
import json
import uuid

import httpx

DEFAULT_BASE_URL = "http://localhost:8000"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Call the mcpchat HTTP API.")
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL, help=f"API base URL (default: {DEFAULT_BASE_URL})")
    parser.add_argument("--user", default="demo-user", help="User id sent in the X-User-Id header")
    parser.add_argument("--provider", help="Optional MCP provider URL to register before chatting")
    parser.add_argument("--message", default="What is the weather in Helsinki right now?")
    return parser.parse_args()


async def main(base_url: str, user: str, provider: str | None, message: str) -> None:
    headers = {"X-User-Id": user}
    async with httpx.AsyncClient(base_url=base_url, headers=headers, timeout=60.0) as client:
        if provider:
            r = await client.post("/api/providers", json={"url": provider})
            if r.status_code == 409:
                print("Provider already registered:", provider)
            else:
                r.raise_for_status()
                data = r.json()
                print(f"Registered {data['name']} with {data['toolCount']} tools")

        tools = await client.get("/api/tools")
        tools.raise_for_status()
        print("Tools:", json.dumps(tools.json(), indent=2))

        payload = {
            "id": str(uuid.uuid4()),
            "messages": [{"id": str(uuid.uuid4()), "role": "user", "content": message}],
        }
        async with client.stream("POST", "/api/chat", json=payload) as r:
            r.raise_for_status()
            async for line in r.aiter_lines():
                if not line.startswith("data:"):
                    continue
                event = json.loads(line[len("data:"):].strip())
                if event["type"] == "text-delta":
                    print(event["textDelta"], end="", flush=True)
                elif event["type"] in ("tool-call", "tool-result", "error"):
                    print(f"\n[{event['type']}] {json.dumps(event)}")
                elif event["type"] == "finish":
                    print("\n[finish]", event["finishReason"])


if __name__ == "__main__":
    args = parse_args()
    asyncio.run(main(args.base_url, args.user, args.provider, args.message))
