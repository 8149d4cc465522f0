from __future__ import annotations

import pytest

from crossci.git_facts.git import event_from_git, repository_slug


@pytest.mark.parametrize(
    "url",
    [
        "git@github.com:acme/sx127x.git",
        "https://github.com/acme/sx127x.git",
        "https://github.com/acme/sx127x/",
        "ssh://git@github.com/acme/sx127x.git",
    ],
)
def test_repository_slug(url):
    assert repository_slug(url) == "acme/sx127x"


def test_event_outside_a_repository_has_no_facts(tmp_path):
    event = event_from_git("push", cwd=str(tmp_path))
    assert event.kind == "push"
    assert event.commit is None
    assert event.branch is None
