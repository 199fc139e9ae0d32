import asyncio

from typedrpc import TypedRpcError


async def ApiHello(req, res):
    name = req.args.get("name")
    if name == "Error":
        raise RuntimeError("Error")
    if name == "TsrpcError":
        raise TypedRpcError("TsrpcError", "TsrpcError")
    if name == "Delay":
        # answered after the handler has returned
        asyncio.get_running_loop().call_later(0.05, res.succ, {"reply": "Hello, Delay!"})
        return
    res.succ({"reply": f"Hello, {name or 'world'}!"})
