import numpy as np
from PIL import Image as PILImage

from models.image import Image
from pipeline.segment_gallery import segment_gallery
from services.segmentation_service import SegmentationService


def test_segment_gallery_saves_masked_pngs(fake_repository, tmp_path, no_dotenv):
    service = SegmentationService(repository_factory=lambda path, delegate: fake_repository())
    gallery = [
        Image(pixels=np.full((6, 6, 3), 90, dtype=np.uint8), path=tmp_path / "first.jpg"),
        Image(pixels=np.full((3, 3, 3), 90, dtype=np.uint8)),
    ]

    results = segment_gallery(gallery, segmentation_service=service, output_dir=tmp_path / "out")

    assert [r.image.path.name for r in results] == ["first_masked.png", "image_0001_masked.png"]
    saved = np.array(PILImage.open(tmp_path / "out" / "first_masked.png"))
    assert saved.shape == (6, 6, 4)
    assert (saved[:, :2, 3] == 0).all()
    assert (saved[:, 2:, 3] == 255).all()
