"""Tests for repository discovery."""

from buildbouncer.git.repo import find_repo_root, is_git_marker, resolve_git_dir


def test_find_repo_root_from_subdirectory(tmp_path):
    (tmp_path / ".git").mkdir()
    nested = tmp_path / "src" / "pkg"
    nested.mkdir(parents=True)
    assert find_repo_root(nested) == tmp_path.resolve()


def test_find_repo_root_none(tmp_path):
    nested = tmp_path / "plain"
    nested.mkdir()
    # tmp_path lives outside any repository
    found = find_repo_root(nested)
    assert found is None or tmp_path.resolve() not in (found, *found.parents)


def test_pointer_file_marker(tmp_path):
    dot_git = tmp_path / ".git"
    dot_git.write_text("\n\nGITDIR: /somewhere/else\n")
    assert is_git_marker(dot_git)


def test_non_pointer_file_is_not_marker(tmp_path):
    dot_git = tmp_path / ".git"
    dot_git.write_text("just some notes\ngitdir: ignored\n")
    assert not is_git_marker(dot_git)
    assert resolve_git_dir(tmp_path) is None


def test_resolve_git_dir_absolute_pointer(tmp_path):
    real = tmp_path / "modules" / "sub"
    real.mkdir(parents=True)
    repo = tmp_path / "checkout"
    repo.mkdir()
    (repo / ".git").write_text(f"gitdir: {real}\n")
    assert resolve_git_dir(repo) == real


def test_resolve_git_dir_missing_target(tmp_path):
    (tmp_path / ".git").write_text("gitdir: ./does-not-exist\n")
    assert resolve_git_dir(tmp_path) is None


def test_resolve_git_dir_plain(tmp_path):
    assert resolve_git_dir(tmp_path) is None
    (tmp_path / ".git").mkdir()
    assert resolve_git_dir(tmp_path) == tmp_path / ".git"
