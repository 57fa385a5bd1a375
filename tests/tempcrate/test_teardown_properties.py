"""Property-based tests for the teardown controller.

Verifies, across arbitrary workspace contents and project names, that
the flag file alone decides between deletion and preservation, that a
preserved workspace lands under the expected name and that teardown is
idempotent.

Testing Configuration:
- Library: Hypothesis (Python)
- Minimum iterations: 100 per property test
"""
import tempfile
from pathlib import Path

from hypothesis import given, settings, strategies as st

from tempcrate.provisioner import FLAG_FILE_NAME, Workspace
from tempcrate.provisioner.models import FLAG_FILE_CONTENT
from tempcrate.teardown import Disposition, TeardownController

FILE_NAME_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789_"


@st.composite
def workspace_files(draw):
    """Relative file paths (at most two levels deep) with contents."""
    names = st.text(alphabet=FILE_NAME_ALPHABET, min_size=1, max_size=10)
    paths = draw(
        st.lists(
            st.lists(names, min_size=1, max_size=2).map(lambda parts: "/".join(parts)),
            max_size=5,
            unique=True,
        )
    )
    # A path may not be both a file and the directory of another file.
    files = [p for p in paths if not any(other.startswith(p + "/") for other in paths)]
    contents = st.text(alphabet=FILE_NAME_ALPHABET + " \n", max_size=50)
    return {path: draw(contents) for path in files if path != FLAG_FILE_NAME}


@st.composite
def project_names(draw):
    return draw(
        st.one_of(
            st.none(),
            st.text(alphabet=FILE_NAME_ALPHABET + "-", min_size=1, max_size=20),
        )
    )


def materialize(root: Path, files: dict, with_flag: bool) -> Path:
    workspace_dir = root / "projects" / "tmp-x1y2z3"
    workspace_dir.mkdir(parents=True)
    for relative, content in files.items():
        target = workspace_dir / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    if with_flag:
        (workspace_dir / FLAG_FILE_NAME).write_text(FLAG_FILE_CONTENT, encoding="utf-8")
    return workspace_dir


class TestFlagFileDecides:

    @given(files=workspace_files(), name=project_names())
    @settings(max_examples=100)
    def test_flag_present_deletes(self, files, name):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            workspace_dir = materialize(root, files, with_flag=True)
            workspace = Workspace(path=workspace_dir, project_name=name)

            outcome = TeardownController(workspace, preserved_dir=root / "kept").run()

            assert outcome.disposition == Disposition.DELETED
            assert not workspace_dir.exists()
            assert not (root / "kept").exists()

    @given(files=workspace_files(), name=project_names())
    @settings(max_examples=100)
    def test_flag_absent_preserves_under_expected_name(self, files, name):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            workspace_dir = materialize(root, files, with_flag=False)
            workspace = Workspace(path=workspace_dir, project_name=name)

            outcome = TeardownController(workspace, preserved_dir=root / "kept").run()

            expected = root / "kept" / (name or workspace_dir.name)
            assert outcome.disposition == Disposition.PRESERVED
            assert outcome.path == expected
            for relative, content in files.items():
                assert (expected / relative).read_text(encoding="utf-8") == content


class TestIdempotence:

    @given(with_flag=st.booleans(), runs=st.integers(min_value=2, max_value=4))
    @settings(max_examples=100)
    def test_repeated_teardown_never_raises(self, with_flag, runs):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            workspace = Workspace(path=materialize(root, {}, with_flag=with_flag))

            outcomes = [
                TeardownController(workspace, preserved_dir=root / "kept").run()
                for _ in range(runs)
            ]

            assert all(outcome.succeeded for outcome in outcomes)
            if with_flag:
                assert {outcome.disposition for outcome in outcomes} == {Disposition.DELETED}
