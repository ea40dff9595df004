import json

import pytest
import responses

CATALOG_URL = "https://api.github.com/licenses"

MIT = {
    "key": "mit",
    "name": "MIT License",
    "spdx_id": "MIT",
    "url": "https://api.github.com/licenses/mit",
    "node_id": "MDc6TGljZW5zZTEz",
    "description": "A short and simple permissive license.",
    "implementation": "Create a text file (typically named LICENSE) in the root of your source code.",
    "body": "MIT License\n\nCopyright (c) [year] [fullname]\n\nPermission is hereby granted...\n",
}

APACHE = {
    "key": "apache-2.0",
    "name": "Apache License 2.0",
    "spdx_id": "Apache-2.0",
    "url": "https://api.github.com/licenses/apache-2.0",
    "node_id": "MDc6TGljZW5zZTI=",
    "description": "A permissive license whose main conditions require preservation of notices.",
    "implementation": "Create a text file (typically named LICENSE) in the root of your source code.",
    "body": "                                 Apache License\n                           Version 2.0, January 2004\n",
}

UNLICENSE = {
    "key": "unlicense",
    "name": "The Unlicense",
    "spdx_id": "Unlicense",
    "url": "https://api.github.com/licenses/unlicense",
    "node_id": "MDc6TGljZW5zZTE1",
    "description": None,
    "implementation": None,
    "body": "This is free and unencumbered software released into the public domain.\n",
}

FULL_LICENSES = [MIT, APACHE, UNLICENSE]


def Summary(full):
    return {k: full[k] for k in ("key", "name", "spdx_id", "url", "node_id")}


def RegisterCatalog(rsps, licenses=FULL_LICENSES):
    rsps.add(responses.GET, CATALOG_URL, json=[Summary(lic) for lic in licenses])

    for lic in licenses:
        rsps.add(responses.GET, lic["url"], json=lic)


def CacheRecord(full):
    return {
        "key": full["key"],
        "name": full["name"],
        "url": full["url"],
        "description": full["description"] or "",
        "implementation": full["implementation"] or "",
        "body": full["body"],
    }


@pytest.fixture
def rsps():
    # Any request not registered by the test fails with a ConnectionError
    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        yield mock


@pytest.fixture
def cacheFile(tmp_path):
    return tmp_path / "home" / ".licenser" / "licenses.db"


@pytest.fixture
def populatedCache(cacheFile):
    cacheFile.parent.mkdir(parents=True)
    cacheFile.write_text(
        json.dumps([CacheRecord(lic) for lic in FULL_LICENSES]), encoding="utf-8"
    )

    return cacheFile
