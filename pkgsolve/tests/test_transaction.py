"""Tests for transactions and their execution"""

import threading
from pathlib import Path

import pytest

from pkgsolve.core.errors import UsageError
from pkgsolve.core.pool import Pool
from pkgsolve.core.request import Action, Request, SolverFlags
from pkgsolve.core.solver import Solver
from pkgsolve.core.specs import PackageInfo
from pkgsolve.core.transaction import ExecutionConfig, Transaction, TransactionType

CHANNEL = "https://example.org/main"


def pkg(name, version, depends=()):
    return PackageInfo(name, version, depends=tuple(depends), channel=CHANNEL,
                       filename=f"{name}-{version}.tar.bz2")


def solve(pool, request):
    solver = Solver(pool, request)
    assert solver.try_solve(), solver.explain_problems()
    return Transaction(pool, solver)


@pytest.fixture
def pool():
    p = Pool()
    p.add_repo_from_packages([
        pkg("A", "1.0"),
        pkg("A", "2.0", depends=["B"]),
        pkg("B", "1.0"),
    ], name="main")
    return p


@pytest.fixture
def installed_pool(pool):
    env = pool.add_repo_from_packages([pkg("A", "1.0")], name="env")
    pool.set_installed_repo(env)
    return pool


class FakeCache:
    def __init__(self, fail=()):
        self.fail = set(fail)
        self.fetched = []
        self._lock = threading.Lock()

    def fetch(self, package):
        with self._lock:
            self.fetched.append(package.name)
        if package.name in self.fail:
            raise IOError(f"cannot download {package.name}")
        return Path("/cache") / package.filename


class FakeInstaller:
    def __init__(self, fail_link=()):
        self.fail_link = set(fail_link)
        self.calls = []

    def link(self, package, path, prefix):
        if package.name in self.fail_link:
            raise OSError(f"cannot link {package.name}")
        self.calls.append(("link", str(package), path))

    def unlink(self, package, prefix):
        self.calls.append(("unlink", str(package)))


class TestTransaction:
    """Tests for building transactions."""

    def test_requires_solution(self, pool):
        solver = Solver(pool, Request.install("Z"))
        solver.try_solve()
        with pytest.raises(UsageError):
            Transaction(pool, solver)

    def test_requires_solve(self, pool):
        with pytest.raises(UsageError):
            Transaction(pool, Solver(pool, Request.install("A")))

    def test_install_with_dependency(self, pool):
        trans = solve(pool, Request.install("A"))
        names = sorted(pool.id2pkginfo(s).name + "-" + pool.id2pkginfo(s).version
                       for s in trans.to_install)
        assert names == ["A-2.0", "B-1.0"]
        assert not trans.to_remove and not trans.to_reinstall
        assert {a.action for a in trans.actions} == {TransactionType.INSTALL}
        # Dependencies come first
        assert [a.name for a in trans.actions] == ["B", "A"]

    def test_upgrade(self, installed_pool):
        trans = solve(installed_pool, Request.install("A==2.0"))
        upgrade = [a for a in trans.actions if a.name == "A"][0]
        assert upgrade.action is TransactionType.UPGRADE
        assert upgrade.is_replacement
        assert upgrade.from_version == "1.0"
        assert upgrade.package.version == "2.0"
        assert installed_pool.is_installed(upgrade.replaces_id)
        assert upgrade.replaces_id in trans.to_remove
        assert upgrade.solvable_id in trans.to_install

    def test_remove(self, installed_pool):
        trans = solve(installed_pool, Request.remove("A"))
        assert [a.action for a in trans.actions] == [TransactionType.REMOVE]
        assert trans.to_remove == set(installed_pool.installed_solvables())
        assert not trans.to_install

    def test_force_reinstall(self, installed_pool):
        request = Request.install("A==1.0", flags=SolverFlags(force_reinstall=True))
        trans = solve(installed_pool, request)
        assert [a.action for a in trans.actions] == [TransactionType.REINSTALL]
        assert len(trans.to_reinstall) == 1
        assert not trans.to_install and not trans.to_remove

    def test_sets_are_disjoint(self, installed_pool):
        trans = solve(installed_pool, Request.install("A==2.0"))
        assert not trans.to_install & trans.to_remove
        assert not trans.to_install & trans.to_reinstall
        assert not trans.to_remove & trans.to_reinstall

    def test_nothing_to_do(self, installed_pool):
        trans = solve(installed_pool, Request.install("A==1.0"))
        assert trans.empty()
        assert trans.to_text() == "Nothing to do."

    def test_pins_are_not_installed(self, pool):
        trans = solve(pool, Request([(Action.PIN, "A==1.0"), (Action.INSTALL, "A")]))
        assert [str(a.package) for a in trans.actions] == ["A-1.0"]

    def test_to_conda(self, installed_pool):
        trans = solve(installed_pool, Request.install("A==2.0"))
        installs, removes = trans.to_conda()
        assert sorted(installs) == [(CHANNEL, "A-2.0.tar.bz2"), (CHANNEL, "B-1.0.tar.bz2")]
        assert removes == [(CHANNEL, "A-1.0.tar.bz2")]

    def test_to_text(self, installed_pool):
        text = solve(installed_pool, Request.install("A==2.0")).to_text()
        assert text.startswith("Transaction:")
        assert "upgrade  A-2.0 (from 1.0)" in text


class TestExecute:
    """Tests for Transaction.execute()."""

    def test_success(self, installed_pool, tmp_path):
        trans = solve(installed_pool, Request.install("A==2.0"))
        cache, installer = FakeCache(), FakeInstaller()
        progress = []
        report = trans.execute(cache, installer, ExecutionConfig(target_prefix=tmp_path),
                               progress_callback=lambda name, done, total: progress.append((done, total)))
        assert report.success
        assert sorted(cache.fetched) == ["A", "B"]
        assert sorted(progress) == [(1, 2), (2, 2)]
        assert installer.calls == [
            ("link", "B-1.0", Path("/cache/B-1.0.tar.bz2")),
            ("unlink", "A-1.0"),
            ("link", "A-2.0", Path("/cache/A-2.0.tar.bz2")),
        ]

    def test_failed_fetch_keeps_old_version(self, installed_pool):
        trans = solve(installed_pool, Request.install("A==2.0"))
        installer = FakeInstaller()
        report = trans.execute(FakeCache(fail=["A"]), installer)
        assert not report.success
        assert [r.action.name for r in report.failed] == ["A"]
        assert "cannot download A" in report.failed[0].error
        assert ("unlink", "A-1.0") not in installer.calls
        assert ("link", "B-1.0", Path("/cache/B-1.0.tar.bz2")) in installer.calls

    def test_stop_on_error(self, pool):
        trans = solve(pool, Request.install("A"))
        installer = FakeInstaller(fail_link=["B"])
        report = trans.execute(FakeCache(), installer, ExecutionConfig(stop_on_error=True))
        assert report.aborted
        assert len(report.results) == 1
        assert installer.calls == []

    def test_continue_on_error(self, pool):
        trans = solve(pool, Request.install("A"))
        installer = FakeInstaller(fail_link=["B"])
        report = trans.execute(FakeCache(), installer)
        assert not report.aborted
        assert [r.success for r in report.results] == [False, True]

    def test_remove_only(self, installed_pool):
        trans = solve(installed_pool, Request.remove("A"))
        cache, installer = FakeCache(), FakeInstaller()
        assert trans.execute(cache, installer).success
        assert cache.fetched == []
        assert installer.calls == [("unlink", "A-1.0")]


@pytest.fixture
def dependent_pool():
    """Installed A-1.0 with C depending on it; A-2.0 is available."""
    p = Pool()
    p.add_repo_from_packages([
        pkg("A", "1.0"),
        pkg("A", "2.0", depends=["B"]),
        pkg("B", "1.0"),
        pkg("C", "1.0", depends=["A"]),
    ], name="main")
    env = p.add_repo_from_packages([pkg("A", "1.0"), pkg("C", "1.0", depends=["A"])], name="env")
    p.set_installed_repo(env)
    return p


class TestReplacementWithDependent:
    """C depends on A while A-1.0 is replaced by A-2.0."""

    def test_dependent_is_untouched(self, dependent_pool):
        trans = solve(dependent_pool, Request.install("A==2.0"))
        assert "C" not in [a.name for a in trans.actions]
        assert [a.action for a in trans.actions if a.name == "A"] == [TransactionType.UPGRADE]

    def test_old_version_unlinked_right_before_new_one(self, dependent_pool):
        trans = solve(dependent_pool, Request.install("A==2.0"))
        installer = FakeInstaller()
        assert trans.execute(FakeCache(), installer).success
        assert not [call for call in installer.calls if call[1].startswith("C-")]
        index = installer.calls.index(("unlink", "A-1.0"))
        assert installer.calls[index + 1] == ("link", "A-2.0", Path("/cache/A-2.0.tar.bz2"))
        # B, which A-2.0 needs, is in place before A-1.0 goes away
        assert installer.calls.index(("link", "B-1.0", Path("/cache/B-1.0.tar.bz2"))) < index

    def test_old_version_stays_when_fetch_fails(self, dependent_pool):
        trans = solve(dependent_pool, Request.install("A==2.0"))
        installer = FakeInstaller()
        report = trans.execute(FakeCache(fail=["A"]), installer)
        assert not report.success
        assert [r.action.name for r in report.failed] == ["A"]
        assert not [call for call in installer.calls if call[0] == "unlink"]
        assert not [call for call in installer.calls if call[1].startswith(("A-", "C-"))]
