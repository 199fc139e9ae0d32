from typedrpc import TypedRpcError


def ApiLogin(req, res):
    if req.args["password"] != "secret":
        raise TypedRpcError("Wrong password", {"retry": True})
    res.succ({"token": "tok-" + req.args["username"]})
