"""Shared fixtures: mocked adapters wired into a real pipeline."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from analysis.impact import RebuildImpactEstimator
from nix.evaluator import NixEvaluator
from repository.git import Git
from repository.github import GitHubClient, GitHubError
from update.models import BestEffort, Candidate, Options
from update.pipeline import UpdatePipeline
from update.publish import Publisher
from vulndb.models import VulnerabilityDatabase

OLD_CONTENTS = '''{ stdenv, fetchurl }:
stdenv.mkDerivation rec {
  pname = "foo";
  version = "1.0";
  src = fetchurl {
    url = "https://example.org/foo-${version}.tar.gz";
    sha256 = "oldhash";
  };
}
'''

NEW_CONTENTS = OLD_CONTENTS.replace('"1.0"', '"1.1"').replace("oldhash", "newhash")


@pytest.fixture
def derivation_file(tmp_path):
    path = tmp_path / "default.nix"
    path.write_text(OLD_CONTENTS, encoding="utf-8")
    return path


@pytest.fixture
def mock_nix(derivation_file):
    nix = MagicMock(spec=NixEvaluator)
    nix.lookup_attr_path.return_value = "foo"
    nix.get_version.return_value = "1.0"
    nix.get_derivation_file.return_value = str(derivation_file)
    nix.get_src_urls.return_value = '[ "https://example.org/foo-1.0.tar.gz" ]'
    nix.get_old_hash.return_value = "oldhash"
    nix.get_hash.return_value = "newhash"
    nix.get_src_url.side_effect = [
        "https://example.org/foo-1.0.tar.gz",
        "https://example.org/foo-1.1.tar.gz",
    ]
    nix.build.return_value = "/nix/store/abc-foo-1.1"
    nix.get_description.return_value = "A foo"
    nix.get_homepage.return_value = '"https://foo.org"'
    nix.get_maintainers.return_value = "@alice"
    nix.get_is_broken.return_value = False
    nix.get_patches.return_value = "[ ]"
    nix.version.return_value = "nix (Nix) 2.18.1"
    return nix


@pytest.fixture
def mock_git():
    git = MagicMock(spec=Git)
    git.fetch_if_stale.return_value = BestEffort.success("fetched")
    git.auto_update_branch_exists.return_value = False
    git.diff.return_value = "diff --git a/default.nix b/default.nix"
    git.head_hash.return_value = "deadbeef"
    return git


@pytest.fixture
def mock_github():
    github = MagicMock(spec=GitHubClient)
    github.existing_update_pr.return_value = None
    github.create_pr.return_value = "https://github.com/NixOS/nixpkgs/pull/1"
    github.release_url.side_effect = GitHubError("not on GitHub")
    github.compare_url.side_effect = GitHubError("not on GitHub")
    return github


@pytest.fixture
def mock_db():
    db = MagicMock(spec=VulnerabilityDatabase)
    db.query.return_value = []
    return db


@pytest.fixture
def harness(mock_nix, mock_git, mock_github, mock_db, derivation_file):
    """A pipeline over mocked adapters; ``outputs`` collects printed PR bodies."""
    outputs = []
    estimator = RebuildImpactEstimator(enabled=False, max_age_sec=3600)
    publisher = Publisher(mock_nix, mock_git, mock_github, mock_db, output=outputs.append)
    pipeline = UpdatePipeline(mock_nix, mock_git, mock_github, mock_db, estimator, publisher=publisher)
    return SimpleNamespace(
        pipeline=pipeline,
        nix=mock_nix,
        git=mock_git,
        github=mock_github,
        db=mock_db,
        estimator=estimator,
        outputs=outputs,
        derivation_file=derivation_file,
    )


def make_candidate(name="foo", old="1.0", new="1.1", url=None, **option_overrides):
    options = Options(update_branches=("master",), **option_overrides)
    return Candidate(name, old, new, source_url=url, options=options)
