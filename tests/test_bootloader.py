from unittest.mock import patch

import pytest

import bootloader


def test_starts_selected_service() -> None:
    with patch.object(bootloader.uvicorn, "run") as mock_run:
        bootloader.main(["transcript-service", "--port", "8010"])

    mock_run.assert_called_once_with("services.transcripts.app:app", host="0.0.0.0", port=8010, reload=False)


def test_gateway_with_reload() -> None:
    with patch.object(bootloader.uvicorn, "run") as mock_run:
        bootloader.main(["gateway", "--host", "127.0.0.1", "--reload"])

    mock_run.assert_called_once_with("app:app", host="127.0.0.1", port=8000, reload=True)


def test_unknown_service_is_rejected() -> None:
    with pytest.raises(SystemExit):
        bootloader.build_parser().parse_args(["worker"])
