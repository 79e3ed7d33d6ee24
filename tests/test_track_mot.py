import cv2
import numpy as np

import track_mot


def write_sequence(tmp_path):
    rows = []
    for frame in range(1, 6):
        rows.append(f"{frame},-1,{100 + frame},50,40,80,0.95,-1,-1,-1")
        rows.append(f"{frame},-1,300,200,40,80,0.05,-1,-1,-1")
    path = tmp_path / "det.txt"
    path.write_text("\n".join(rows) + "\n")
    return path


def read_results(path):
    return np.loadtxt(path, delimiter=",", ndmin=2)


def test_cli_writes_mot_rows(tmp_path, capsys):
    det = write_sequence(tmp_path)
    out = tmp_path / "res" / "seq.txt"

    assert track_mot.main(["--detections", str(det), "--output", str(out)]) == 0

    rows = read_results(out)
    assert rows.shape == (5, 10)
    assert rows[:, 0].tolist() == [1, 2, 3, 4, 5]
    assert set(rows[:, 1]) == {1}
    np.testing.assert_allclose(rows[:, 7:], -1)
    assert "5 frames" in capsys.readouterr().out


def test_cli_min_conf_and_images(tmp_path):
    det = write_sequence(tmp_path)
    images = tmp_path / "img1"
    images.mkdir()
    rng = np.random.default_rng(0)
    frame = cv2.GaussianBlur((rng.random((240, 320, 3)) * 255).astype(np.uint8), (7, 7), 2)
    for i in range(1, 6):
        cv2.imwrite(str(images / f"{i:06d}.jpg"), frame)
    out = tmp_path / "seq.txt"

    track_mot.main(["--detections", str(det), "--output", str(out), "--images", str(images),
                    "--min-conf", "0.5", "--gmc-method", "ecc"])
    rows = read_results(out)
    assert rows.shape == (5, 10)
    assert set(rows[:, 1]) == {1}


def test_load_detections_groups_by_frame(tmp_path):
    det = write_sequence(tmp_path)
    per_frame = track_mot.load_detections(str(det), min_conf=0.5)
    assert sorted(per_frame) == [1, 2, 3, 4, 5]
    assert len(per_frame[3]) == 1
    assert per_frame[3][0].bbox_tlwh == (103., 50., 40., 80.)
