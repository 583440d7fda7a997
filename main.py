import os
import sys

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.backends.backend_qtagg import FigureCanvasQTAgg
from PyQt6.QtCore import Qt, pyqtSignal
from PyQt6.QtGui import QAction, QKeySequence, QPixmap
from PyQt6.QtWidgets import (
    QApplication,
    QColorDialog,
    QFileDialog,
    QLabel,
    QMainWindow,
    QMessageBox,
    QScrollArea,
    QSplitter,
    QStatusBar,
    QTextEdit,
    QVBoxLayout,
    QWidget,
)

from cbm_file import CBMFile
from cbm_image import CBMImage
from utils.cbm_qt import cbm_image_to_qimage, create_palette_image

IMAGE_FILTER = "Image files (*.png *.bmp *.jpg *.jpeg *.gif);;All files (*)"
EXPORT_FILTER = "PNG files (*.png);;BMP files (*.bmp)"
CBM_FILTER = "CBM files (*.cbm *.CBM);;All files (*)"


class ImageLabel(QLabel):
    # Custom signal: emit coordinates + color
    pixelHovered = pyqtSignal(int, int, int, int, int, int)

    def __init__(self):
        super().__init__()
        self.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.setStyleSheet("background-color: gray;")
        self.setMouseTracking(True)
        self.image = None  # QImage backing for pixel lookup

    def setImage(self, pixmap):
        self.setPixmap(pixmap)
        self.image = pixmap.toImage()

    def clearImage(self):
        self.clear()
        self.image = None

    def mouseMoveEvent(self, ev):
        assert ev is not None

        if self.image is not None and self.pixmap() is not None:
            scaled_pixmap = self.pixmap().scaled(
                self.size(),
                Qt.AspectRatioMode.KeepAspectRatio,
                Qt.TransformationMode.FastTransformation,
            )

            if scaled_pixmap.width() > 0 and scaled_pixmap.height() > 0:
                x_ratio = self.image.width() / scaled_pixmap.width()
                y_ratio = self.image.height() / scaled_pixmap.height()

                # Center offset
                x_offset = (self.width() - scaled_pixmap.width()) // 2
                y_offset = (self.height() - scaled_pixmap.height()) // 2

                x = int((ev.pos().x() - x_offset) * x_ratio)
                y = int((ev.pos().y() - y_offset) * y_ratio)

                if 0 <= x < self.image.width() and 0 <= y < self.image.height():
                    color = self.image.pixelColor(x, y)
                    self.pixelHovered.emit(
                        x,
                        y,
                        color.red(),
                        color.green(),
                        color.blue(),
                        color.alpha(),
                    )
        super().mouseMoveEvent(ev)


class CBMInfoPanel(QWidget):
    """Widget to display CBM header information and color palette"""

    def __init__(self):
        super().__init__()
        self.setup_ui()

    def setup_ui(self):
        layout = QVBoxLayout(self)

        title = QLabel("<b>CBM Information</b>")
        layout.addWidget(title)

        self.header_text = QTextEdit()
        self.header_text.setReadOnly(True)
        self.header_text.setMaximumHeight(300)
        layout.addWidget(QLabel("Header Information:"))
        layout.addWidget(self.header_text)

        layout.addWidget(QLabel("Color Palette:"))
        self.palette_label = QLabel()
        self.palette_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.palette_label.setStyleSheet("border: 1px solid gray;")

        scroll = QScrollArea()
        scroll.setWidget(self.palette_label)
        scroll.setWidgetResizable(True)
        layout.addWidget(scroll)

    def set_cbm_info(self, cbm: CBMFile):
        """Update panel with container and current image information"""
        image = cbm.current_image
        lines = [str(cbm)]

        if image is not None:
            lines.append("")
            lines.append(f"Image {cbm.current_index + 1} of {len(cbm.images)}")
            lines.append(str(image.to_header()))

        self.header_text.setPlainText("\n".join(lines))

        palette = None if image is None else image.get_palette24()
        if palette is None:
            self.palette_label.clear()
            return

        try:
            pixmap = QPixmap.fromImage(create_palette_image(palette))
            self.palette_label.setPixmap(pixmap)
        except Exception as e:
            self.palette_label.setText(f"Failed to load palette: {e}")


class CBMViewer(QMainWindow):
    def __init__(self):
        super().__init__()
        self.setWindowTitle("CBM Viewer")
        self.setGeometry(100, 100, 800, 600)

        self.cbm = CBMFile()
        self.hist_canvas = None

        self.create_menu()
        self.create_central_widget()
        self.create_info_bar()

    def _add_action(self, menu, text, slot, shortcut=None):
        action = QAction(text, self)
        action.triggered.connect(slot)
        if shortcut is not None:
            action.setShortcut(QKeySequence(shortcut))
        menu.addAction(action)

    def create_menu(self):
        menubar = self.menuBar()
        assert menubar is not None

        file_menu = menubar.addMenu("File")
        assert file_menu is not None

        self._add_action(file_menu, "Open CBM File", self.open_cbm, "Ctrl+O")
        self._add_action(file_menu, "Save CBM File", self.save_cbm, "Ctrl+S")
        self._add_action(file_menu, "Save CBM File As", self.save_cbm_as)
        file_menu.addSeparator()
        self._add_action(file_menu, "Import Image", self.import_image)
        self._add_action(file_menu, "Replace Image", self.replace_image)
        self._add_action(file_menu, "Export Image", self.export_image)

        image_menu = menubar.addMenu("Image")
        assert image_menu is not None

        self._add_action(image_menu, "First", self.move_first, "Home")
        self._add_action(image_menu, "Previous", self.move_previous, "PgUp")
        self._add_action(image_menu, "Next", self.move_next, "PgDown")
        self._add_action(image_menu, "Last", self.move_last, "End")
        image_menu.addSeparator()
        self._add_action(image_menu, "Compress All", self.compress_all)
        self._add_action(image_menu, "Decompress All", self.decompress_all)
        self._add_action(
            image_menu, "Make Color Transparent", self.make_color_transparent
        )

        enhancement_menu = menubar.addMenu("Enhancement")
        assert enhancement_menu is not None

        self._add_action(enhancement_menu, "Palette Histogram", self.create_histogram)

    def create_central_widget(self):
        central_widget = QWidget()
        layout = QVBoxLayout(central_widget)

        # Create splitter for main image and info panel
        self.splitter = QSplitter(Qt.Orientation.Horizontal)

        self.image_label = ImageLabel()
        self.image_label.pixelHovered.connect(self.update_info_bar)
        self.splitter.addWidget(self.image_label)

        self.cbm_info_panel = CBMInfoPanel()
        self.splitter.addWidget(self.cbm_info_panel)

        # Set initial sizes (70% image, 30% info)
        self.splitter.setSizes([700, 300])

        layout.addWidget(self.splitter)
        self.setCentralWidget(central_widget)

    def create_info_bar(self):
        self.info_bar = QStatusBar()
        self.info_bar.showMessage("Ready")
        self.setStatusBar(self.info_bar)

    def _run(self, title, func, *args):
        """Run an action and report failures in a message box."""
        try:
            func(*args)
        except Exception as e:
            QMessageBox.critical(self, "Error", f"{title}: {str(e)}")
            return False
        return True

    def open_cbm(self):
        file_path, _ = QFileDialog.getOpenFileName(
            self, "Open CBM File", "", CBM_FILTER
        )

        if not file_path:
            return

        if self._run("Failed to open CBM file", self._load_cbm, file_path):
            self.cleanup()

    def _load_cbm(self, file_path: str):
        self.cbm = CBMFile.from_file(file_path)
        self.refresh()

    def save_cbm(self):
        if self.cbm.file_name is None:
            self.save_cbm_as()
            return

        if self._run("Failed to save CBM file", self.cbm.save, self.cbm.file_name):
            self.info_bar.showMessage(f"Saved {self.cbm.file_name}")

    def save_cbm_as(self):
        file_path, _ = QFileDialog.getSaveFileName(
            self, "Save CBM File", "", CBM_FILTER
        )

        if not file_path:
            return

        if self._run("Failed to save CBM file", self.cbm.save, file_path):
            self.refresh()

    def import_image(self):
        file_path, _ = QFileDialog.getOpenFileName(
            self, "Import Image", "", IMAGE_FILTER
        )

        if not file_path:
            return

        self._run("Failed to import image", self._import_image, file_path)

    def _import_image(self, file_path: str):
        image = CBMImage.from_file(file_path)

        if self.cbm.images:
            position = self.cbm.current_index + 1
        else:
            position = 0

        self.cbm.images.insert(position, image)
        self.cbm.current_index = position
        self.refresh()

    def replace_image(self):
        image = self.cbm.current_image
        if image is None:
            self.import_image()
            return

        file_path, _ = QFileDialog.getOpenFileName(
            self, "Replace Image", "", IMAGE_FILTER
        )

        if not file_path:
            return

        if self._run("Failed to replace image", image.replace_with_file, file_path):
            self.refresh()

    def export_image(self):
        image = self.cbm.current_image
        if image is None:
            return

        file_path, _ = QFileDialog.getSaveFileName(
            self, "Export Image", "", EXPORT_FILTER
        )

        if not file_path:
            return

        if self._run("Failed to export image", image.save, file_path):
            self.info_bar.showMessage(f"Exported {os.path.basename(file_path)}")

    def move_first(self):
        self.cbm.move_first()
        self.refresh()

    def move_previous(self):
        self.cbm.move_previous()
        self.refresh()

    def move_next(self):
        self.cbm.move_next()
        self.refresh()

    def move_last(self):
        self.cbm.move_last()
        self.refresh()

    def compress_all(self):
        if self._run("Failed to compress images", self.cbm.compress):
            self.refresh()

    def decompress_all(self):
        if self._run("Failed to decompress images", self.cbm.decompress):
            self.refresh()

    def make_color_transparent(self):
        image = self.cbm.current_image
        if image is None:
            return

        color = QColorDialog.getColor(parent=self, title="Transparent Color")
        if not color.isValid():
            return

        if self._run(
            "Failed to edit image",
            image.make_color_transparent,
            color.red(),
            color.green(),
            color.blue(),
        ):
            self.refresh()

    def refresh(self):
        """Show the current image and its information."""
        name = self.cbm.file_name or "untitled"
        self.setWindowTitle(f"CBM Viewer - {os.path.basename(name)}")
        self.cbm_info_panel.set_cbm_info(self.cbm)

        image = self.cbm.current_image
        qimage = None if image is None else cbm_image_to_qimage(image)

        if qimage is None or qimage.isNull():
            self.image_label.clearImage()
            return

        pixmap = QPixmap.fromImage(qimage)
        scaled_pixmap = pixmap.scaled(
            self.image_label.size(),
            Qt.AspectRatioMode.KeepAspectRatio,
            Qt.TransformationMode.FastTransformation,
        )
        self.image_label.setImage(scaled_pixmap)

    def update_info_bar(self, x, y, r, g, b, a):
        self.info_bar.showMessage(f"X:{x}, Y:{y}  RGBA:({r}, {g}, {b}, {a})")

    def create_histogram(self):
        image = self.cbm.current_image
        if image is None:
            return

        try:
            hist = image.get_index_histogram()
        except Exception as e:
            QMessageBox.critical(self, "Error", f"Failed to read image: {str(e)}")
            return

        if hist is None:
            return

        self.remove_histogram()

        fig = plt.figure()
        ax = fig.add_subplot(111)

        ax.step(np.arange(256), hist, where="mid", color="black", label="Pixels")

        ax.set_xlim(0, 255)
        ax.set_xlabel("Palette Index")
        ax.set_ylabel("Frequency")

        self.hist_canvas = FigureCanvasQTAgg(fig)
        self.splitter.addWidget(self.hist_canvas)

    def remove_histogram(self):
        if self.hist_canvas is not None:
            self.hist_canvas.setParent(None)
            self.hist_canvas.deleteLater()
            self.hist_canvas = None

    def cleanup(self):
        """
        Cleanup previous operations after loading a container.
        """
        self.remove_histogram()


if __name__ == "__main__":
    app = QApplication(sys.argv)
    viewer = CBMViewer()
    viewer.show()
    sys.exit(app.exec())
