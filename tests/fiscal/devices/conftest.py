# tests/fiscal/devices/conftest.py

import json

import pytest


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, content=None):
        self.status_code = status_code
        self._json = json_data
        if content is None:
            content = json.dumps(json_data).encode("utf-8") if json_data is not None else b""
        self.content = content
        self.text = content.decode("utf-8", "replace")

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("sem corpo JSON")
        return self._json


class FakeSession:
    """
    Substitui requests.Session nos testes de contrato HTTP dos dispositivos.

    Rotas são (método, trecho do path); vence o trecho mais longo contido na
    URL. Cada rota tem uma fila de respostas; a última se repete. Uma
    exceção na fila é levantada.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method, path, response):
        self.routes.setdefault((method, path), []).append(response)
        return self

    def calls_to(self, method, path):
        return [c for c in self.calls if c["method"] == method and path in c["url"]]

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})

        matches = [key for key in self.routes if key[0] == method and key[1] in url]
        if not matches:
            return FakeResponse(404, {"error": "not found"})

        queue = self.routes[max(matches, key=lambda key: len(key[1]))]
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def fake_response():
    return FakeResponse
