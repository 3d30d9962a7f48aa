# Local redirect playground. Run: uvicorn mock_redirect_site:app --port 9000
from fastapi import FastAPI, Response
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse

app = FastAPI(title="Mock Redirect Site")

GET_HEAD = ["GET", "HEAD"]


@app.api_route("/", methods=GET_HEAD, response_class=HTMLResponse)
def home():
    html = """
    <!doctype html><meta charset="utf-8">
    <h2>Redirect scenarios</h2>

    <h3>1) Short link chain (302)</h3>
    <a href="/short">/short → /r1 → /r2 → /landing</a><br><br>

    <h3>2) Many hops</h3>
    <a href="/chain/6">/chain/6 (6 redirects)</a><br>
    <a href="/chain/15">/chain/15 (too many for the default limit)</a><br><br>

    <h3>3) Loop</h3>
    <a href="/loop/a">/loop/a → /loop/b → /loop/a</a><br><br>

    <h3>4) Relative Location</h3>
    <a href="/docs-old/guide/start">/docs-old/guide/start → next (directory-relative)</a><br><br>

    <h3>5) Redirect status codes</h3>
    <a href="/status/301">301</a> <a href="/status/303">303</a>
    <a href="/status/307">307</a> <a href="/status/308">308</a>
    <a href="/status/300">300</a><br><br>

    <h3>6) 302 without Location</h3>
    <a href="/broken-redirect">/broken-redirect</a><br><br>

    <h3>7) HEAD not allowed</h3>
    <a href="/get-only">/get-only</a><br><br>
    """
    return html


@app.api_route("/short", methods=GET_HEAD)
def short():
    return RedirectResponse(url="/r1", status_code=302)


@app.api_route("/r1", methods=GET_HEAD)
def r1():
    return RedirectResponse(url="/r2", status_code=302)


@app.api_route("/r2", methods=GET_HEAD)
def r2():
    return RedirectResponse(url="/landing", status_code=302)


@app.api_route("/chain/{n}", methods=GET_HEAD)
def chain(n: int):
    n = max(0, min(50, n))
    if n == 0:
        return RedirectResponse(url="/landing", status_code=302)
    return RedirectResponse(url=f"/chain/{n-1}", status_code=302)


@app.api_route("/loop/a", methods=GET_HEAD)
def loop_a():
    return RedirectResponse(url="/loop/b", status_code=301)


@app.api_route("/loop/b", methods=GET_HEAD)
def loop_b():
    return RedirectResponse(url="/loop/a", status_code=301)


@app.api_route("/docs-old/guide/start", methods=GET_HEAD)
def relative_start():
    return RedirectResponse(url="next", status_code=307)


@app.api_route("/docs-old/guide/next", methods=GET_HEAD)
def relative_next():
    return RedirectResponse(url="/landing", status_code=308)


@app.api_route("/status/{code}", methods=GET_HEAD)
def status(code: int):
    if not 300 <= code < 400:
        return Response(status_code=code)
    return RedirectResponse(url="/landing", status_code=code)


@app.api_route("/broken-redirect", methods=GET_HEAD)
def broken_redirect():
    # 3xx인데 Location 없음
    return Response(status_code=302)


@app.get("/get-only", response_class=PlainTextResponse)
def get_only():
    return PlainTextResponse("HEAD is not allowed here")


@app.api_route("/landing", methods=GET_HEAD, response_class=HTMLResponse)
def landing():
    return "<!doctype html><meta charset='utf-8'><h2>Landing page</h2>"


@app.get("/robots.txt")
def robots():
    return PlainTextResponse("User-agent: *\nDisallow: /")


@app.get("/favicon.ico")
def favicon():
    return Response(status_code=204)
