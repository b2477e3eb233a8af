from PIL import Image

# Pillow mode -> colour space name
COLOR_SPACES = {
    '1': 'b-w',
    'L': 'b-w',
    'LA': 'b-w',
    'P': 'srgb',
    'RGB': 'srgb',
    'RGBA': 'srgb',
    'CMYK': 'cmyk',
    'YCbCr': 'ycbcr',
    'LAB': 'lab',
    'HSV': 'hsv',
    'I': 'grey16',
    'I;16': 'grey16',
    'F': 'grey32f',
}


class PillowDeriver:
    def __init__(self, jpeg_quality=85):
        self.jpeg_quality = jpeg_quality

    def probe(self, file_path):
        with Image.open(file_path) as img:
            bands = img.getbands()
            has_alpha = 'A' in bands or 'a' in bands or (
                img.mode == 'P' and 'transparency' in img.info
            )
            return {
                'format': (img.format or '').lower(),
                'width': img.width,
                'height': img.height,
                'color_space': COLOR_SPACES.get(img.mode, img.mode.lower()),
                'channels': len(bands),
                'has_alpha': has_alpha,
            }

    def resize_bounded(self, file_path, max_width, max_height, dest_path):
        """Fits the image inside max_width x max_height, keeping its aspect ratio."""
        with Image.open(file_path) as img:
            fmt = img.format or 'JPEG'
            thumb = img.copy()
            thumb.thumbnail((max_width, max_height))
            if fmt == 'JPEG':
                thumb = self._flatten(thumb)
            self._save(thumb, dest_path, fmt)
        return dest_path

    def reformat(self, file_path, target_format, dest_path):
        target_format = target_format.upper()
        if target_format == 'JPG':
            target_format = 'JPEG'
        with Image.open(file_path) as img:
            out = img.copy()
            if target_format == 'JPEG':
                out = self._flatten(out)
            self._save(out, dest_path, target_format)
        return dest_path

    def _flatten(self, img):
        # JPEG has no alpha or palette
        if img.mode in ('RGB', 'L', 'CMYK'):
            return img
        if img.mode in ('RGBA', 'LA') or (img.mode == 'P' and 'transparency' in img.info):
            rgba = img.convert('RGBA')
            background = Image.new('RGB', rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.getchannel('A'))
            return background
        return img.convert('RGB')

    def _save(self, img, dest_path, fmt):
        if fmt == 'JPEG':
            img.save(dest_path, format=fmt, quality=self.jpeg_quality)
        else:
            img.save(dest_path, format=fmt)
